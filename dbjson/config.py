# dbjson/config.py
"""
Configuration management for database connections and extraction jobs.
Supports YAML configuration files with optional password encryption and global settings.
"""

import os
from textwrap import dedent
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple

from .defaults import settings # noqa: F401
from .database import Database, get_params_for_database, register_user_drivers
from .cursors import Cursor

try:
    import yaml
except ImportError:
    raise ImportError("PyYAML is required. Install with: pip install PyYAML")

try:
    from cryptography.fernet import Fernet
    HAS_CRYPTO = True
except ImportError:
    HAS_CRYPTO = False

try:
    import keyring
    HAS_KEYRING = True
except ImportError:
    HAS_KEYRING = False

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_VAR = 'DBJSON_ENCRYPTION_KEY'
KEYRING_SERVICE = 'dbjson'
JOB_TYPES = ('query', 'query_merge', 'fetch_table', 'query_ids_fetch_table')


def diagnose_config(config_file: Optional[str] = None) -> List[Tuple[str, str]]:
    """Config health check: file, encryption dependencies, keys, passwords and jobs."""
    results = []

    try:
        mgr = ConfigManager(config_file)
        results.append(('✓', f"Config loaded: {mgr.config_file}"))
    except Exception as e:
        results.append(('✗', f"Config failed: {e}"))
        return results

    results.append(('✓', "cryptography ready") if HAS_CRYPTO else ('✗', "cryptography missing"))
    results.append(('✓', "keyring ready") if HAS_KEYRING else ('?', "keyring optional"))

    # peek at the keys without decrypting anything
    env_key = os.getenv(ENCRYPTION_KEY_VAR)
    keyring_key = None
    if HAS_KEYRING:
        try:
            keyring_key = keyring.get_password(KEYRING_SERVICE, 'encryption_key')
        except Exception as e:
            results.append(('?', f"Keyring unavailable: {e}"))

    if env_key:
        results.append(('✓', f"{ENCRYPTION_KEY_VAR} set"))
        results.append(('✓', "Env key valid") if _valid_fernet(env_key) else ('✗', "Env key invalid"))
    else:
        results.append(('?', "No env key"))

    if keyring_key:
        results.append(('✓', "Keyring key set"))
        results.append(('✓', "Keyring key valid") if _valid_fernet(keyring_key) else ('✗', "Keyring key invalid"))
    elif HAS_KEYRING:
        results.append(('?', "Keyring empty"))

    if env_key and keyring_key:
        results.append(('✓', "Keys match") if env_key == keyring_key else ('✗', "KEYS MISMATCH"))

    enc_count = sum(
        1 for c in mgr.config.get('connections', {}).values()
        if 'encrypted_password' in c
    ) + sum(
        1 for p in mgr.config.get('passwords', {}).values()
        if 'encrypted_password' in p
    )
    results.append(('✓', f"{enc_count} encrypted passwords") if enc_count else ('✓', "No encrypted passwords"))

    uenc_count = sum(
        1 for c in mgr.config.get('connections', {}).values()
        if 'password' in c and not str(c.get('password', '')).startswith('${')
    ) + sum(
        1 for p in mgr.config.get('passwords', {}).values()
        if 'password' in p and not str(p.get('password', '')).startswith('${')
    )
    results.append(("✗", f"{uenc_count} unencrypted passwords!") if uenc_count else ('✓', "No unencrypted passwords"))

    connections = set(mgr.list_connections())
    for name, job in mgr.config.get('jobs', {}).items():
        missing = {job.get('connection'), job.get('ids_connection')} - connections - {None}
        if missing:
            results.append(('✗', f"Job '{name}' uses unknown connection(s): {sorted(missing)}"))
        else:
            results.append(('✓', f"Job '{name}' ({job['type']})"))
    return results


def _valid_fernet(key: str) -> bool:
    try:
        Fernet(key.encode())
        return True
    except Exception:
        return False


class ConfigManager:
    """
    Manage dbjson configuration from YAML files.

    ConfigManager loads a YAML file defining database connections, encrypted
    passwords, global settings and named extraction jobs. It searches standard
    locations, validates the structure, and gives access to each section.

    Configuration File Structure
    ----------------------------
    ::

        # dbjson.yml
        settings:
          default_batch_size: 500
          logging:
            level: DEBUG

        connections:
          warehouse:
            type: postgres
            host: localhost
            database: warehouse
            user: etl
            encrypted_password: gAAAAABh...
            cursor:
              column_case: lower

        passwords:
          api_key:
            encrypted_password: gAAAAABh...

        jobs:
          customer_orders:
            type: query_merge
            connection: warehouse
            query: select * from orders where customer_id in (#SOURCE_IDS#)
            parent_key_path: $.customers[*].id
            child_key_column: customer_id
            insertion_key: orders
            output: ./out/orders

    Configuration Locations
    -----------------------
    1. File specified in config_file parameter
    2. ``./dbjson.yml`` then ``./dbjson.yaml``
    3. ``~/.config/dbjson.yml`` then ``~/.config/dbjson.yaml``

    Parameters
    ----------
    config_file : str or Path, optional
        Path to YAML config file. If None, searches standard locations.

    Notes
    -----
    * Connections require a 'type' (postgres, oracle, sqlite) or 'driver'
    * Jobs require a 'type' and a 'connection'
    * Encrypted passwords need DBJSON_ENCRYPTION_KEY or a key in the system keyring
    * Passwords can reference environment variables with ${VAR_NAME}
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._fernet = None

        self._apply_settings()
        if self.config.get('drivers'):
            register_user_drivers(self.config['drivers'])

    def _find_config_file(self, config_file: Optional[str]) -> Path:
        """Find the configuration file."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            return path

        candidates = [
            Path("dbjson.yml"),
            Path("dbjson.yaml"),
            Path.home() / ".config" / "dbjson.yml",
            Path.home() / ".config" / "dbjson.yaml"
        ]

        for candidate in candidates:
            if candidate.exists():
                return candidate

        raise FileNotFoundError(
            "No config file found. Looked in: " +
            ", ".join(str(c) for c in candidates)
        )

    def _load_config(self) -> Dict[str, Any]:
        """Load and validate configuration file."""
        try:
            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f) or {}
            if not isinstance(config, dict):
                raise ValueError(f"Invalid config file {self.config_file}.")

            for section in ('settings', 'connections', 'passwords', 'jobs', 'drivers'):
                if section in config and not isinstance(config[section], dict):
                    raise ValueError(f"Invalid config file {self.config_file}: '{section}' must be a dictionary")

            for name, conn in config.get('connections', {}).items():
                if not isinstance(conn, dict) or ('type' not in conn and 'driver' not in conn):
                    raise ValueError(f"Invalid connection '{name}' in {self.config_file}: 'type' or 'driver' is required")

            for name, password_data in config.get('passwords', {}).items():
                if not isinstance(password_data, dict):
                    raise ValueError(f"Invalid password entry '{name}' in {self.config_file}: must be a dictionary")
                if 'password' not in password_data and 'encrypted_password' not in password_data:
                    raise ValueError(
                        f"Invalid password entry '{name}' in {self.config_file}: 'password' or 'encrypted_password' is required")

            for name, job in config.get('jobs', {}).items():
                if not isinstance(job, dict):
                    raise ValueError(f"Invalid job '{name}' in {self.config_file}: must be a dictionary")
                if job.get('type') not in JOB_TYPES:
                    raise ValueError(
                        f"Invalid job '{name}' in {self.config_file}: 'type' must be one of {list(JOB_TYPES)}")
                if not job.get('connection'):
                    raise ValueError(f"Invalid job '{name}' in {self.config_file}: 'connection' is required")

            logger.info(f"Loaded config from {self.config_file}")
            return config
        except Exception as e:
            raise ValueError(f"Failed to load config file {self.config_file}: {e}")

    def _apply_settings(self) -> None:
        """Merge the settings section into the global settings."""
        config_settings = self.config.get('settings', {})
        for key, val in config_settings.items():
            if isinstance(val, dict) and isinstance(settings.get(key), dict):
                settings[key].update(val)
            else:
                settings[key] = val

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value from the config.

        Args:
            key: Setting key (supports dot notation like 'logging.level')
            default: Default value if key not found

        Returns:
            Setting value or default
        """
        value = self.config.get('settings', {})

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def _get_encryption_key(self) -> bytes:
        """Get encryption key from the environment or the keyring."""
        key_str = os.environ.get(ENCRYPTION_KEY_VAR)
        if key_str:
            logger.debug(f"Using {ENCRYPTION_KEY_VAR} from environment")
            return key_str.encode()

        if HAS_KEYRING:
            try:
                key_str = keyring.get_password(KEYRING_SERVICE, 'encryption_key')
            except Exception as e:
                logger.warning(f"Keyring access failed: {e}")
                key_str = None
            if key_str:
                logger.debug("Using encryption key from keyring")
                return key_str.encode()
        if HAS_CRYPTO:
            if HAS_KEYRING:
                msg = dedent("""\
                Encryption key not found in environment or keyring.
                Run: `dbjson store-key` to generate and store a new encryption key in the keyring.
                """)
            else:
                msg = dedent(f"""\
                Encryption key not found in environment or keyring.
                Run `dbjson generate-key` to generate a new encryption key
                then set it in the {ENCRYPTION_KEY_VAR} environment variable.""")
            raise ValueError(msg)
        else:
            raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

    def _get_fernet(self) -> 'Fernet':
        if self._fernet is None:
            self._fernet = Fernet(self._get_encryption_key())
        return self._fernet

    def decrypt_password(self, encrypted_password: str) -> str:
        """Decrypt an encrypted password."""
        try:
            fernet = self._get_fernet()
            return fernet.decrypt(encrypted_password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to decrypt password: {e}")

    def encrypt_password(self, password: str) -> str:
        """Encrypt a password for storage."""
        try:
            fernet = self._get_fernet()
            return fernet.encrypt(password.encode()).decode()
        except Exception as e:
            raise ValueError(f"Failed to encrypt password: {e}")

    @staticmethod
    def _substitute_env(value: Any) -> Any:
        if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
            env_var = value[2:-1]
            env_value = os.environ.get(env_var)
            if env_value is None:
                raise ValueError(f"Environment variable {env_var} not set")
            return env_value
        return value

    def get_connection_config(self, name: str) -> Dict[str, Any]:
        """Get configuration for a named connection, with its password resolved."""
        connections = self.config.get('connections', {})

        if name not in connections:
            available = list(connections.keys())
            raise ValueError(
                f"Connection '{name}' not found in config. "
                f"Available connections: {available}"
            )

        config = connections[name].copy()

        if 'encrypted_password' in config:
            config['password'] = self.decrypt_password(config['encrypted_password'])
            del config['encrypted_password']

        if 'password' in config:
            config['password'] = self._substitute_env(config['password'])

        return config

    def list_connections(self) -> list:
        """List all available connection names."""
        return list(self.config.get('connections', {}).keys())

    def get_password(self, name: str) -> str:
        """
        Get a stored password by name.

        Raises:
            ValueError: If password not found or decryption fails
        """
        passwords = self.config.get('passwords', {})

        if name not in passwords:
            available = list(passwords.keys())
            raise ValueError(
                f"Password '{name}' not found in config. "
                f"Available passwords: {available}"
            )

        password_entry = passwords[name]
        if 'encrypted_password' in password_entry:
            return self.decrypt_password(password_entry['encrypted_password'])
        return self._substitute_env(password_entry['password'])

    def list_passwords(self) -> list:
        """List all available password names."""
        return list(self.config.get('passwords', {}).keys())

    def get_job_config(self, name: str) -> Dict[str, Any]:
        """Get the definition of a named job."""
        jobs = self.config.get('jobs', {})
        if name not in jobs:
            raise ValueError(f"Job '{name}' not found in config. Available jobs: {list(jobs.keys())}")
        return dict(jobs[name])

    def list_jobs(self) -> list:
        """List all configured job names."""
        return list(self.config.get('jobs', {}).keys())


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def _get_manager(config_file: Optional[str] = None) -> ConfigManager:
    global _config_manager

    if config_file:
        return ConfigManager(config_file)
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def store_key(key: Optional[str] = None, force: bool = False) -> None:
    """CLI utility to store encryption key in system keyring."""
    if not HAS_CRYPTO:
        raise ValueError("Encryption not available. Install cryptography package to enable encryption.")

    if not HAS_KEYRING:
        raise ValueError("Keyring not available. Install keyring package to store key in system keyring.")

    try:
        current_key = keyring.get_password(KEYRING_SERVICE, "encryption_key")
    except Exception:
        current_key = None

    if current_key:
        if force:
            msg = "Encryption key already stored in system keyring. Overwriting!"
            logger.warning(msg)
            print(msg)
        else:
            msg = "Encryption key already stored in system keyring. Use --force to overwrite."
            logger.warning(msg)
            print(msg)
            return

    if key is None:
        key = _generate_encryption_key()
    elif not _valid_fernet(key):
        raise ValueError("Invalid encryption key. Must be 32 url-safe base64-encoded bytes.")

    try:
        keyring.set_password(KEYRING_SERVICE, "encryption_key", key)
    except Exception as e:
        msg = f"Failed to store encryption key in system keyring: {e}"
        logger.error(msg)
        raise ValueError(msg)
    msg = "Stored encryption key in system keyring"
    logger.info(msg)
    print(msg)


def _generate_encryption_key() -> str:
    return Fernet.generate_key().decode()


def generate_encryption_key() -> str:
    """
    Generate a random encryption key.

    Store it in the DBJSON_ENCRYPTION_KEY environment variable or in the
    keyring with `dbjson store-key [your key]`.

    Returns:
        str: A randomly generated Fernet key
    """
    key = _generate_encryption_key()
    if HAS_KEYRING:
        msg = "Key generated.  Store in system keyring with `dbjson store-key [your key]`"
    else:
        msg = f"Key generated.  Store in {ENCRYPTION_KEY_VAR} environment variable"
    print(msg)
    return key


def set_config_file(config_file: str) -> None:
    """Set the configuration file to use globally."""
    global _config_manager
    _config_manager = ConfigManager(config_file)


def connect(name: str, password: str = None, config_file: Optional[str] = None) -> Database:
    """
    Connect to a named database from configuration.

    Args:
        name: Connection name from config file
        password: Optional password if not stored in config
        config_file: Optional path to config file

    Returns:
        Database connection instance

    Example:
        db = connect('warehouse')
        cursor = db.cursor()
        cursor.execute("SELECT * FROM orders")
    """
    config = _get_manager(config_file).get_connection_config(name)
    if password:
        config['password'] = password
    info = {key: val for key, val in config.items() if key != 'password'}
    logger.debug(f"Connecting to database {name} with config: {info}")

    db_type = config.pop('type', None) or settings.get('default_db_type', 'postgres')
    driver = config.pop('driver', None)
    cursor_settings = config.pop('cursor', None)
    if cursor_settings is not None:
        allowed_cursor = Cursor.WRAPPER_SETTINGS + Cursor.DRIVER_SETTINGS
        unknown = set(cursor_settings.keys()) - set(allowed_cursor)
        if unknown:
            logger.warning(f"Unknown cursor settings (ignored): {unknown}")
        cursor_settings = {key: val for key, val in cursor_settings.items() if key in allowed_cursor}

    # remove any params that are not allowed for the database type
    allowed_params = get_params_for_database(db_type, driver)
    config = {key: val for key, val in config.items() if key in allowed_params}

    db = Database.create(db_type, driver=driver, cursor_settings=cursor_settings, **config)
    db.name = name
    return db


def get_password(name: str, config_file: Optional[str] = None) -> str:
    """
    Get a stored password from configuration.

    Example:
        api_key = get_password('api_key')
    """
    return _get_manager(config_file).get_password(name)


def get_setting(key: str, default: Any = None, config_file: Optional[str] = None) -> Any:
    """
    Get a setting value from configuration.

    Args:
        key: Setting key (supports dot notation like 'logging.level')
        default: Default value if key not found
        config_file: Optional path to config file

    Example:
        level = get_setting('logging.level', 'INFO')
    """
    return _get_manager(config_file).get_setting(key, default)


def get_job_config(name: str, config_file: Optional[str] = None) -> Dict[str, Any]:
    """Get the definition of a named job from configuration."""
    return _get_manager(config_file).get_job_config(name)


def encrypt_password(password: str = None, encryption_key: str = None) -> str:
    """
    CLI utility function to encrypt a password.

    Args:
        password: Password to encrypt (if None, prompts for input)
        encryption_key: Optional encryption key. If None, uses DBJSON_ENCRYPTION_KEY or the keyring

    Returns:
        str: Encrypted password
    """
    if password is None:
        import getpass
        password = getpass.getpass("Enter password to encrypt: ")

    if encryption_key:
        fernet = Fernet(encryption_key.encode())
        encrypted = fernet.encrypt(password.encode()).decode()
    else:
        temp_config = ConfigManager.__new__(ConfigManager)
        temp_config._fernet = None
        encrypted = temp_config.encrypt_password(password)

    print(encrypted)
    return encrypted


def encrypt_config_file(filename: str) -> int:
    """CLI Utility to encrypt all plain text passwords in a config file. Returns the number encrypted."""
    temp_config = ConfigManager.__new__(ConfigManager)
    temp_config._fernet = None
    with open(filename) as fp:
        config = yaml.safe_load(fp)
    changes = 0
    if config:
        entries = list(config.get('connections', {}).values()) + list(config.get('passwords', {}).values())
        for val in entries:
            password = val.get('password')
            if not password or 'encrypted_password' in val or str(password).startswith('${'):
                continue
            val['encrypted_password'] = temp_config.encrypt_password(str(password))
            del val['password']
            changes += 1

    if changes > 0:
        with open(filename, 'w') as fp:
            yaml.safe_dump(config, fp, default_flow_style=False, sort_keys=False)
        print(f"Encrypted {changes} passwords in {filename}")
    else:
        print(f"No passwords to encrypt in {filename}")
    return changes
