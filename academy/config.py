from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Academy Admin'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Kolkata'
    app_base_url: str = 'http://127.0.0.1:8000'
    database_url: str = 'sqlite:///./academy.db'
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    auth_password_min_length: int = 6
    bootstrap_admin_email: str = ''
    bootstrap_admin_password: str = ''
    bootstrap_admin_name: str = 'Administrator'
    upload_dir: str = './uploads'
    material_max_bytes: int = 10 * 1024 * 1024
    assignment_max_bytes: int = 20 * 1024 * 1024
    assignment_max_files: int = 5
    payment_currency: str = 'INR'
    payment_provider: str = ''
    default_page_size: int = 25
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
