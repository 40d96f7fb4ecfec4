from app.models.user import User
from app.models.role import Role
from app.models.user_role import UserRole
from app.models.menu import Menu
from app.models.role_menu import RoleMenu
from app.models.product import Product
from app.models.loan_application import LoanApplication
from app.models.loan_history import LoanHistory
from app.models.notification import Notification
from app.models.user_device import UserDevice

__all__ = [
    "User",
    "Role",
    "UserRole",
    "Menu",
    "RoleMenu",
    "Product",
    "LoanApplication",
    "LoanHistory",
    "Notification",
    "UserDevice",
]
