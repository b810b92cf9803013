from .sqlalchemy_user_repository import SqlalchemyUserRepository
from .sqlalchemy_role_repository import SqlalchemyRoleRepository
from .sqlalchemy_permission_repository import SqlalchemyPermissionRepository
from .sqlalchemy_credential_repository import SqlalchemyCredentialRepository
