"""Built-in supervisor hierarchy used when no project configuration is loaded."""

from __future__ import annotations

from .models import NodeKind, Rule, Severity, SupervisorConfig


def default_configs() -> list[SupervisorConfig]:
    """Technical, business and behavior coordinators with their specialists."""
    technical = SupervisorConfig(
        id="coord-technical",
        name="Technical",
        kind=NodeKind.COORDINATOR,
        keywords=[
            "código", "função", "classe", "método", "variável",
            "code", "function", "class", "method", "import", "export",
        ],
    )
    business = SupervisorConfig(
        id="coord-business",
        name="Business",
        kind=NodeKind.COORDINATOR,
        keywords=["regra", "validação", "processo", "fluxo", "usuário", "rule", "workflow", "user"],
    )
    behavior = SupervisorConfig(
        id="coord-behavior",
        name="Behavior",
        kind=NodeKind.COORDINATOR,
        keywords=["fazer", "implementar", "criar", "só", "apenas", "depois", "only", "later"],
    )

    security = SupervisorConfig(
        id="spec-security",
        name="Security",
        kind=NodeKind.SPECIALIST,
        parent_id=technical.id,
        keywords=["sql", "query", "password", "senha", "token", "auth", "input"],
        rules=[
            Rule(
                id="sql-injection",
                description="Use prepared statements in SQL queries",
                severity=Severity.CRITICAL,
                check="Check whether string concatenation is used to build SQL queries",
                example_violation='query = "SELECT * FROM users WHERE id = " + user_id',
            ),
            Rule(
                id="xss-prevention",
                description="Sanitize user input",
                severity=Severity.HIGH,
                check="Check whether user input is rendered without sanitization",
            ),
        ],
    )
    architecture = SupervisorConfig(
        id="spec-architecture",
        name="Architecture",
        kind=NodeKind.SPECIALIST,
        parent_id=technical.id,
        keywords=["padrão", "pattern", "arquitetura", "architecture", "estrutura", "módulo", "module"],
    )
    completeness = SupervisorConfig(
        id="spec-completeness",
        name="Completeness",
        kind=NodeKind.SPECIALIST,
        parent_id=behavior.id,
        keywords=["todos", "todas", "cada", "completo", "pronto", "feito", "all", "every", "done"],
        rules=[
            Rule(
                id="scope-reduction",
                description="Do not reduce scope without authorization",
                severity=Severity.HIGH,
                check=(
                    'Detect phrases such as "for now", "just this one", "only the first", '
                    '"por enquanto", "só essa", "primeiro só"'
                ),
            )
        ],
    )

    return [technical, business, behavior, security, architecture, completeness]
