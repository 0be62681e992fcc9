"""
PostgreSQL row-level security derived from the policy predicates.

The SQL mirrors ``PolicyEngine.is_super_admin`` and
``PolicyEngine.can_access_client`` and is rendered from the same role-name
constants. The current principal is read from the ``app.principal_id``
session setting (see ``apps.core.middleware.bind_principal``).

Policies are enabled without FORCE, so the table owner used by the
application keeps full access and the application-level checks stay
authoritative; other database roles (reporting, support consoles) are held to
the same predicates.
"""
from apps.rbac.models import SystemRole

CURRENT_PRINCIPAL = "NULLIF(current_setting('app.principal_id', TRUE), '')::uuid"

# table -> column referencing the tenant
PROTECTED_TABLES = {
    'tenants': 'id',
    'principals': 'client_id',
    'audit_records': 'tenant_id',
}


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def function_sql():
    """SQL creating the predicate functions."""
    return [
        f"""
        CREATE OR REPLACE FUNCTION app_is_super_admin(p_principal uuid)
        RETURNS boolean LANGUAGE sql STABLE SECURITY DEFINER AS $$
            SELECT EXISTS (
                SELECT 1 FROM role_assignments ra
                JOIN roles r ON r.id = ra.role_id
                WHERE ra.principal_id = p_principal
                  AND r.name = {_quote(SystemRole.SUPER_ADMIN)}
            )
        $$
        """,
        """
        CREATE OR REPLACE FUNCTION app_can_access_client(p_principal uuid, p_tenant uuid)
        RETURNS boolean LANGUAGE sql STABLE SECURITY DEFINER AS $$
            SELECT p_principal IS NOT NULL AND (
                app_is_super_admin(p_principal)
                OR (p_tenant IS NOT NULL AND EXISTS (
                    SELECT 1 FROM principals p
                    WHERE p.id = p_principal AND p.client_id = p_tenant
                ))
            )
        $$
        """,
    ]


def policy_sql():
    """SQL enabling row security and one access policy per protected table."""
    statements = []
    for table, column in PROTECTED_TABLES.items():
        statements.append(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        statements.append(f"DROP POLICY IF EXISTS {table}_client_access ON {table}")
        statements.append(
            f"CREATE POLICY {table}_client_access ON {table} "
            f"USING (app_can_access_client({CURRENT_PRINCIPAL}, {column}))"
        )
    return statements


def row_security_sql():
    """All statements, in order."""
    return function_sql() + policy_sql()


def reverse_sql():
    statements = []
    for table in PROTECTED_TABLES:
        statements.append(f"DROP POLICY IF EXISTS {table}_client_access ON {table}")
        statements.append(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
    statements.append("DROP FUNCTION IF EXISTS app_can_access_client(uuid, uuid)")
    statements.append("DROP FUNCTION IF EXISTS app_is_super_admin(uuid)")
    return statements
