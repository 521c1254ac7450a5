#!/usr/bin/env python3
"""
Portfolio Integration Configuration
Environment-driven settings for the Project Server client, the CSOM bridge,
the portfolio data service and the integration API
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PACKAGE_ROOT = Path(__file__).resolve().parent.parent


def _env_bool(name, default):
    return os.getenv(name, default).lower() == 'true'


class IntegrationConfig:
    """Configuration for the Project Server integration layer"""

    # Project Server (REST)
    PS_URL = os.getenv('PS_URL', 'http://localhost/pwa')
    PS_USERNAME = os.getenv('PS_USERNAME', '')
    PS_PASSWORD = os.getenv('PS_PASSWORD', '')
    PS_DOMAIN = os.getenv('PS_DOMAIN', '')
    PS_ENABLED = _env_bool('PS_ENABLED', 'true')
    PS_REQUEST_TIMEOUT = int(os.getenv('PS_REQUEST_TIMEOUT', 30))

    # Publish queue polling
    QUEUE_MAX_WAIT_SECONDS = int(os.getenv('PS_QUEUE_MAX_WAIT', 60))
    QUEUE_POLL_INTERVAL_SECONDS = float(os.getenv('PS_QUEUE_POLL_INTERVAL', 2))

    # Data service
    CACHE_TTL_SECONDS = int(os.getenv('PS_CACHE_TTL', 300))
    TASK_FETCH_WORKERS = int(os.getenv('PS_TASK_FETCH_WORKERS', 8))
    DATA_DIR = os.getenv('PORTFOLIO_DATA_DIR', str(PACKAGE_ROOT / 'portfolio_data' / 'data'))

    # CSOM bridge - client side
    BRIDGE_URL = os.getenv('PS_BRIDGE_URL', 'http://localhost:8080')
    BRIDGE_TIMEOUT_SECONDS = int(os.getenv('PS_BRIDGE_TIMEOUT', 120))

    # CSOM bridge - server side (runs on the Project Server VM)
    BRIDGE_PORT = int(os.getenv('PS_BRIDGE_PORT', 8080))
    BRIDGE_HOST = os.getenv('PS_BRIDGE_HOST', '0.0.0.0')
    PWA_URL = os.getenv('PWA_URL', 'http://localhost/pwa')
    AUTOMATION_INTERPRETER = os.getenv('PS_BRIDGE_INTERPRETER', 'powershell.exe')
    AUTOMATION_SCRIPT = os.getenv(
        'PS_BRIDGE_SCRIPT', str(PACKAGE_ROOT / 'ps_bridge' / 'Invoke-PSAssignment.ps1')
    )
    AUTOMATION_TIMEOUT_SECONDS = int(os.getenv('PS_AUTOMATION_TIMEOUT', 180))
    AUTOMATION_MAX_OUTPUT_BYTES = int(os.getenv('PS_AUTOMATION_MAX_OUTPUT', 10 * 1024 * 1024))

    # Integration API
    API_HOST = os.getenv('API_HOST', '0.0.0.0')
    API_PORT = int(os.getenv('API_PORT', 3001))
    API_AUTH_ENABLED = _env_bool('API_AUTH_ENABLED', 'true')
    API_AUTH_KEY = os.getenv('API_AUTH_KEY', 'development_key_change_in_production')
    API_ALLOWED_EMAILS = [
        e.strip().lower() for e in os.getenv('API_ALLOWED_EMAILS', '').split(',') if e.strip()
    ]
    API_TOKEN_MAX_AGE_SECONDS = int(os.getenv('API_TOKEN_MAX_AGE', 3600))

    # Logging Configuration
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('LOG_DIR')

    @classmethod
    def ps_live(cls):
        """Live mode needs the feature flag and a credential to sign requests with"""
        return cls.PS_ENABLED and bool(cls.PS_PASSWORD)

    @classmethod
    def ps_credentials(cls):
        return {
            'base_url': cls.PS_URL,
            'username': cls.PS_USERNAME,
            'password': cls.PS_PASSWORD,
            'domain': cls.PS_DOMAIN,
        }

    @classmethod
    def get_summary(cls):
        """Configuration summary safe for logs and status endpoints (no secrets)"""
        return {
            'ps_url': cls.PS_URL,
            'ps_user': f"{cls.PS_DOMAIN}\\{cls.PS_USERNAME}" if cls.PS_DOMAIN else cls.PS_USERNAME,
            'ps_live': cls.ps_live(),
            'cache_ttl_seconds': cls.CACHE_TTL_SECONDS,
            'bridge_url': cls.BRIDGE_URL,
            'auth_enabled': cls.API_AUTH_ENABLED,
        }

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        issues = []

        for name in ('BRIDGE_PORT', 'API_PORT'):
            port = getattr(cls, name)
            if port < 1 or port > 65535:
                issues.append(f"{name} must be between 1 and 65535")

        for name in ('CACHE_TTL_SECONDS', 'PS_REQUEST_TIMEOUT', 'QUEUE_MAX_WAIT_SECONDS',
                     'BRIDGE_TIMEOUT_SECONDS', 'AUTOMATION_TIMEOUT_SECONDS', 'TASK_FETCH_WORKERS'):
            if getattr(cls, name) <= 0:
                issues.append(f"{name} must be positive")

        if cls.QUEUE_POLL_INTERVAL_SECONDS <= 0:
            issues.append("QUEUE_POLL_INTERVAL_SECONDS must be positive")

        if cls.ps_live() and not cls.PS_URL:
            issues.append("PS_URL is required when Project Server integration is enabled")

        if cls.API_AUTH_ENABLED and cls.API_AUTH_KEY == 'development_key_change_in_production':
            issues.append("API_AUTH_KEY is still the development default")

        return issues


# Environment-specific configurations
class DevelopmentConfig(IntegrationConfig):
    """Development environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(IntegrationConfig):
    """Production environment configuration"""
    DEBUG = False
    LOG_LEVEL = 'INFO'


class TestConfig(IntegrationConfig):
    """Test environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    PS_ENABLED = False
    PS_PASSWORD = ''
    API_AUTH_ENABLED = False
    CACHE_TTL_SECONDS = 60
    QUEUE_MAX_WAIT_SECONDS = 1
    QUEUE_POLL_INTERVAL_SECONDS = 0.01
    LOG_DIR = None


# Configuration factory
def get_config(env=None):
    """Get configuration based on environment"""
    env = env or os.getenv('PORTFOLIO_ENV', 'development')

    configs = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'test': TestConfig
    }

    return configs.get(env, DevelopmentConfig)
