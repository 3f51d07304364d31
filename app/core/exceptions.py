# app/core/exceptions.py

class BaseAppException(Exception):
    """Базовый класс для всех кастомных исключений приложения."""
    def __init__(self, message: str = "App exception"):
        super().__init__(message)

# ==== Валидация ====

class ValidationError(BaseAppException):
    """Общая ошибка валидации."""
    def __init__(self, message: str = "Validation error"):
        super().__init__(message)

class TaskValidationError(ValidationError):
    """Ошибка валидации задачи."""
    def __init__(self, message: str = "Task validation error"):
        super().__init__(message)

class TimeLogValidationError(ValidationError):
    """Ошибка валидации записи о часах."""
    def __init__(self, message: str = "Time log validation error"):
        super().__init__(message)

# ==== NotFound ====

class NotFoundError(BaseAppException):
    """Ошибка отсутствия ресурса."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)

class TaskNotFound(NotFoundError):
    """Ошибка: задача не найдена."""
    def __init__(self, message: str = "Task not found"):
        super().__init__(message)

class UserNotFound(NotFoundError):
    """Ошибка: пользователь не найден."""
    def __init__(self, message: str = "User not found"):
        super().__init__(message)

# ==== Права ====

class PermissionDeniedError(BaseAppException):
    """Ошибка: недостаточно прав."""
    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)

class AssignmentPermissionDenied(PermissionDeniedError):
    """Ошибка: менеджер не может назначить задачу этому пользователю."""
    def __init__(self, target_id: str = "", message: str = "אין לך הרשאה להקצות משימה למשתמש זה"):
        super().__init__(message)
        self.target_id = target_id

# ==== Бизнес-правила ====

class BusinessRuleError(BaseAppException):
    """Операция нарушает бизнес-правило (клиент может исправить и повторить)."""
    def __init__(self, message: str = "Business rule violation"):
        super().__init__(message)

class HoursLogRequired(BusinessRuleError):
    """Нельзя закрыть задачу без отчёта о часах."""
    requires_hours_log = True

    def __init__(self, message: str = "יש לדווח על שעות עבודה לפני סימון המשימה כהושלמה (hours log required)"):
        super().__init__(message)
