"""
Helper utilities for dbstage.

This module contains small utility functions used throughout
the application for common operations.
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

import yaml


def load_config_file(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.
    
    Args:
        file_path: Path to configuration file
    
    Returns:
        Configuration dictionary
    """
    file_path = Path(file_path)
    
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")
    
    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.suffix.lower() in ['.yaml', '.yml']:
            return yaml.safe_load(f)
        elif file_path.suffix.lower() == '.json':
            return json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_path.suffix}")


def save_json_report(payload: Dict[str, Any], file_path: Union[str, Path]) -> Path:
    """Write a JSON report, creating parent directories as needed."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, indent=2, default=str)
        f.write("\n")
    return file_path


def format_bytes(bytes_count: float) -> str:
    """Format bytes into human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def nearest_existing_dir(path: Union[str, Path]) -> Path:
    """Walk up from ``path`` to the closest directory that exists."""
    candidate = Path(path).expanduser().absolute()
    if candidate.is_dir():
        return candidate
    for parent in candidate.parents:
        if parent.is_dir():
            return parent
    return Path.cwd()
