# Import models here so Alembic can discover metadata.
from tenantguard.models.user import User  # noqa: F401
from tenantguard.models.tenant import Tenant  # noqa: F401
from tenantguard.models.tenant_membership import TenantMembership  # noqa: F401
from tenantguard.models.contract import Contract  # noqa: F401
from tenantguard.models.audit_log import AuditLog  # noqa: F401
