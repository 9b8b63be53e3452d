from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken, RefreshToken
from .security import SecurityEvent, AuditLog
from .inventory import InventoryItem, InventoryTransaction
from .production import (
    ProductionGuide,
    GuideAssignment,
    ProductionStep,
    StepWorkSession,
    GuideInventory,
    GuideChangeHistory,
    StepComment,
)
from .templates import ProductionTemplate
from .communications import Notification
from .timekeeping import TimeTrackingSettings, AttendanceSession, AttendanceBreak
from .quality import QualityCheckTemplate, QualityCheck

__all__ = [
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission',
    'SessionToken', 'RefreshToken',
    'SecurityEvent', 'AuditLog',
    'InventoryItem', 'InventoryTransaction',
    'ProductionGuide', 'GuideAssignment', 'ProductionStep', 'StepWorkSession',
    'GuideInventory', 'GuideChangeHistory', 'StepComment',
    'ProductionTemplate',
    'Notification',
    'TimeTrackingSettings', 'AttendanceSession', 'AttendanceBreak',
    'QualityCheckTemplate', 'QualityCheck',
]
