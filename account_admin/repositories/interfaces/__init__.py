from .user import IUserRepository
from .role import IRoleRepository
from .permission import IPermissionRepository
from .credential import ICredentialRepository
