from amc_portal.models.user import User, UserRole
from amc_portal.models.token_blacklist import TokenBlacklist
from amc_portal.models.user_session import UserSession
