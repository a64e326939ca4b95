from amc_portal.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from amc_portal.models.user import User
from amc_portal.models.token_blacklist import TokenBlacklist
from amc_portal.models.user_session import UserSession
