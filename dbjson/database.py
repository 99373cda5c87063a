# dbjson/database.py
"""
Database connection wrapper that provides a uniform interface
to different database adapters.
"""

import importlib
import importlib.util
import logging
import os
from contextlib import contextmanager
from typing import Any, List, Optional, Type, Union

from .cursors import Cursor, DictCursor
from .defaults import settings
from .utils import ParamStyle

logger = logging.getLogger(__name__)

# users can define their own drivers in the config file
_user_drivers = {}


class CursorType:
    DICT = 'dict'
    LIST = 'list'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]


DRIVERS = {
    # PostgreSQL Drivers
    'psycopg2': {
        'database_type': 'postgres',
        'priority': 11,
        'param_map': {'database': 'dbname'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'sslmode', 'connect_timeout', 'application_name',
                            'client_encoding', 'options', 'sslcert', 'sslkey', 'sslrootcert'},
        'connection_method': 'connection_string',
        'default_port': 5432,
    },
    'psycopg': {  # psycopg3
        'database_type': 'postgres',
        'priority': 12,
        'param_map': {'database': 'dbname'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'sslmode', 'connect_timeout', 'application_name',
                            'client_encoding', 'options', 'sslcert', 'sslkey', 'sslrootcert'},
        'connection_method': 'connection_string',
        'default_port': 5432,
    },

    # Oracle Drivers
    'oracledb': {
        'database_type': 'oracle',
        'priority': 11,
        'param_map': {'database': 'service_name'},
        'required_params': [{'dsn', 'user'}, {'host', 'port', 'database', 'user'}],
        'optional_params': {'password', 'mode', 'events', 'purity', 'cclass', 'tag', 'matchanytag',
                            'config_dir', 'wallet_location', 'wallet_password'},
        'connection_method': 'dsn',
        'default_port': 1521
    },
    'cx_Oracle': {
        'database_type': 'oracle',
        'priority': 12,
        'param_map': {'database': 'service_name'},
        'required_params': [{'dsn', 'user'}, {'host', 'port', 'database', 'user'}],
        'optional_params': {'password', 'mode', 'events', 'purity', 'cclass', 'tag', 'matchanytag',
                            'encoding', 'nencoding', 'edition', 'appcontext'},
        'connection_method': 'dsn',
        'default_port': 1521
    },

    # SQLite Driver
    'sqlite3': {
        'database_type': 'sqlite',
        'priority': 1,
        'param_map': {},
        'required_params': [{'database'}],
        'optional_params': {'timeout', 'detect_types', 'isolation_level', 'check_same_thread',
                            'factory', 'cached_statements', 'uri'},
        'connection_method': 'kwargs'
    }
}


def register_user_drivers(drivers_config: dict) -> None:
    """Register drivers from config file."""
    _user_drivers.update(drivers_config)


def get_all_drivers() -> dict:
    """Get combined built-in and user drivers."""
    return {**DRIVERS, **_user_drivers}


def get_drivers_for_database(db_type: str, valid_only: bool = True) -> List[str]:
    """
    Gets a list of drivers available for the specified database type.

    Parameters:
        db_type (str): The type of database for which to retrieve drivers.
        valid_only (bool): Only include drivers that are importable (default is True).

    Returns:
        List[str]: Driver names sorted by priority (lower is preferred).
    """
    all_drivers = get_all_drivers()
    available_drivers = []

    for driver_name, info in all_drivers.items():
        if info['database_type'] == db_type:
            if valid_only and importlib.util.find_spec(info.get('module', driver_name)) is None:
                continue
            available_drivers.append(driver_name)

    def sort_key(driver_name):
        priority = all_drivers[driver_name]['priority']
        # User drivers get slight priority boost for tie-breaking
        if driver_name in _user_drivers:
            priority -= 0.5
        return priority

    available_drivers.sort(key=sort_key)
    return available_drivers


def get_params_for_database(db_type: str, driver: Optional[str] = None) -> set:
    """Get all valid parameters for a database type from DRIVERS metadata."""
    valid_params = set()
    for driver_name, driver_info in get_all_drivers().items():
        if driver_info['database_type'] != db_type:
            continue
        if driver and driver_name != driver:
            continue
        for param_set in driver_info['required_params']:
            valid_params.update(param_set)
        valid_params.update(driver_info.get('optional_params', set()))
    return valid_params


def validate_connection_params(driver_name: str, **params) -> dict:
    """
    Validate connection parameters against driver requirements.

    Args:
        driver_name: Name of the database driver
        **params: Connection parameters

    Returns:
        Dict of validated parameters, mapped to the driver's names, extras removed

    Raises:
        ValueError: If the driver is unknown or required parameters are missing
    """
    all_drivers = get_all_drivers()
    if driver_name not in all_drivers:
        raise ValueError(f"Unknown driver: {driver_name}")

    driver_info = all_drivers[driver_name]
    params = {key: val for key, val in params.items() if val is not None}

    if 'port' not in params and driver_info.get('default_port'):
        params['port'] = driver_info['default_port']

    if not any(required.issubset(params.keys()) for required in driver_info['required_params']):
        raise ValueError(f"Missing required parameters. Need one of: {driver_info['required_params']}")

    param_map = driver_info.get('param_map', {})
    all_valid_params = set()
    for req_set in driver_info['required_params']:
        all_valid_params.update(req_set)
    all_valid_params.update(driver_info.get('optional_params', set()))

    return {param_map.get(key, key): value for key, value in params.items() if key in all_valid_params}


def get_connection_string(**kwargs) -> str:
    """Get libpq style connection string from keyword arguments."""
    return " ".join([f"{key}={value}" for key, value in kwargs.items()])


class Database:
    """
    Database connection wrapper that provides uniform interface
    across different database adapters.

    Attribute reads and writes that the wrapper does not own go to the driver
    connection, so ``db.autocommit = False`` reaches the driver directly.
    """

    # Attributes stored locally, others delegated to _connection
    _local_attrs = [
        '_connection', 'server_type', 'database_name', 'interface',
        'name', 'placeholder', 'cursor_settings', '_closed'
    ]

    # Cursor type mapping
    CURSOR_TYPES = {
        CursorType.DICT: DictCursor,
        CursorType.LIST: Cursor
    }

    def __init__(self, connection, interface, database_name: Optional[str] = None,
                 cursor_settings: Optional[dict] = None):
        """
        Initialize Database wrapper.

        Args:
            connection: Underlying database connection object
            interface: Database adapter module (psycopg2, oracledb, etc.)
            database_name: Name of the database
            cursor_settings: Defaults for cursors created by ``cursor()`` (column_case, debug, type)
        """
        self._connection = connection
        self.interface = interface
        self.database_name = database_name
        self.name = None
        self.cursor_settings = dict(cursor_settings or {})
        self._closed = False

        paramstyle = getattr(interface, 'paramstyle', ParamStyle.DEFAULT)
        self.placeholder = ParamStyle.get_placeholder(paramstyle)

        interface_name = getattr(interface, '__name__', '')
        if interface_name in get_all_drivers():
            self.server_type = get_all_drivers()[interface_name]['database_type']
        else:
            self.server_type = 'unknown'

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying connection."""
        if key == '__name__':
            return self.name or self.database_name or 'unknown'
        return getattr(self._connection, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes locally or delegate to connection."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._connection, key, value)

    def __str__(self) -> str:
        """String representation of the database connection."""
        if self.database_name:
            return f'Database({self.database_name}:{self.server_type})'
        return f'Database({self.server_type})'

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def url(self) -> str:
        """Identifier recorded in lineage events for documents fetched from this connection."""
        name = self.name or self.database_name or ''
        return f'{self.server_type}://{name}'

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._connection.close()

    def cursor(self, cursor_type: Union[str, Type] = None, **kwargs) -> Cursor:
        """
        Create a cursor of the specified type.

        Args:
            cursor_type: 'dict' (default), 'list', or a cursor class
            **kwargs: Additional arguments passed to cursor

        Examples:
            cursor = db.cursor()                  # DictCursor
            cursor = db.cursor('list')            # plain lists
            cursor = db.cursor(name='extract')    # psycopg2 server-side cursor
        """
        for key, val in self.cursor_settings.items():
            if key != 'type':
                kwargs.setdefault(key, val)
        if cursor_type is None:
            cursor_type = self.cursor_settings.get('type')
        if cursor_type is None:
            cursor_type = settings.get('default_cursor_type', CursorType.DICT)
        if isinstance(cursor_type, str):
            if cursor_type not in CursorType.values():
                raise ValueError(
                    f"Invalid cursor type '{cursor_type}'. "
                    f"Must be one of: {CursorType.values()}"
                )
            cursor_class = self.CURSOR_TYPES[cursor_type]
        elif callable(cursor_type) and hasattr(cursor_type, 'fetchone'):
            cursor_class = cursor_type
        else:
            raise ValueError(f"Invalid cursor type: {cursor_type}")

        return cursor_class(self, **kwargs)

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.

        Example:
            with db.transaction():
                cursor = db.cursor()
                cursor.execute("INSERT ...")
                # Commit on success, rollback on exception
        """
        try:
            yield self
            self.commit()
        except Exception:
            self.rollback()
            raise

    @classmethod
    def create(cls, db_type: str, driver: Optional[str] = None, cursor_settings: Optional[dict] = None,
               **kwargs) -> 'Database':
        """
        Factory method to create database connections.

        Args:
            db_type: Database type ('postgres', 'oracle', 'sqlite')
            driver: Specific driver to use, otherwise the highest priority installed one
            cursor_settings: Defaults for cursors created from this connection
            **kwargs: Connection parameters

        Returns:
            Database instance
        """
        all_drivers = get_all_drivers()
        db_driver = None
        driver_name = None
        if driver:
            if driver not in all_drivers:
                raise ValueError(f"Unknown driver: {driver}")
            if all_drivers[driver]['database_type'] != db_type:
                raise ValueError(f"Driver '{driver}' is not compatible with database type '{db_type}'")
            try:
                db_driver = importlib.import_module(all_drivers[driver].get('module', driver))
                driver_name = driver
            except ImportError:
                logger.warning(f"Driver '{driver}' not available, falling back to default")

        if db_driver is None:
            for candidate in get_drivers_for_database(db_type):
                try:
                    db_driver = importlib.import_module(all_drivers[candidate].get('module', candidate))
                    driver_name = candidate
                    break
                except ImportError:
                    pass

        if db_driver is None:
            raise ImportError(f"No database driver found for database type '{db_type}'")

        database_name = kwargs.get('database')
        params = validate_connection_params(driver_name, **kwargs)

        method = all_drivers[driver_name]['connection_method']
        if method == 'kwargs':
            connection = db_driver.connect(**params)
        elif method == 'connection_string':
            connection = db_driver.connect(get_connection_string(**params))
        elif method == 'dsn':
            if hasattr(db_driver, 'makedsn') and 'dsn' not in params:
                host = params.pop('host', 'localhost')
                port = params.pop('port', 1521)
                service_name = params.pop('service_name', None)
                params['dsn'] = db_driver.makedsn(host, port, service_name=service_name)
            connection = db_driver.connect(**params)
        else:
            raise ValueError(f"Unsupported connection method '{method}' for driver '{driver_name}'")

        logger.debug(f"Connected to {db_type} database {database_name} using {driver_name}")
        return cls(connection, db_driver, database_name, cursor_settings)


def postgres(user: str, password: Optional[str] = None, database: str = 'postgres',
             host: str = 'localhost', port: int = 5432, driver: Optional[str] = None, **kwargs) -> Database:
    """Create PostgreSQL connection."""
    return Database.create('postgres', user=user, password=password, database=database,
                           host=host, port=port, driver=driver, **kwargs)


def oracle(user: str, password: Optional[str] = None, database: Optional[str] = None,
           host: Optional[str] = None, port: int = 1521, driver: Optional[str] = None, **kwargs) -> Database:
    """Create Oracle connection."""
    return Database.create('oracle', user=user, password=password, database=database,
                           host=host, port=port, driver=driver, **kwargs)


def sqlite(database: str, **kwargs) -> Database:
    """Create SQLite connection."""
    import sqlite3

    connection = sqlite3.connect(database, **kwargs)
    return Database(connection, sqlite3, os.path.basename(database))
