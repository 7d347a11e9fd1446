from .admin_console import console_bp
