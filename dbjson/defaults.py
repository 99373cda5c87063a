# dbjson/defaults.py
"""Default settings - no imports to avoid circular dependencies."""

settings = {
    'default_batch_size': 100,
    'default_fetch_size': 1000,
    'default_ids_batch_size': 1000,
    'default_id_column': 'source_id',
    'ids_placeholder': '#SOURCE_IDS#',
    'default_insertion_key': 'data',
    'default_column_case': 'preserve',
    'default_cursor_type': 'dict',
    'default_db_type': 'postgres',
    'oracle_string_array_type': 'ARRAYOFSTRINGS',
    'oracle_number_array_type': 'ARRAYOFNUMBERS',
    'output_dir': './output',
    'date_format': '%Y-%m-%d',
    'time_format': '%H:%M:%S',
    'datetime_format': '%Y-%m-%d %H:%M:%S',
    'timestamp_format': '%Y-%m-%d %H:%M:%S.%f',  # with microseconds
    'logging': {
        'directory': './logs',
        'level': 'INFO',
        'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        'timestamp_format': '%Y-%m-%d %H:%M:%S',
        'filename_format': '%Y%m%d_%H%M%S',  # Set to '' for single log file (no timestamp)
        'split_errors': True,
        'console': True,
        'retention_days': 30,
    }
}
