from academy.routers import assignments, attendance, auth, batches, materials, payments, users

__all__ = [
    'assignments',
    'attendance',
    'auth',
    'batches',
    'materials',
    'payments',
    'users',
]
