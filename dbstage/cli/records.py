"""
Operations CSV reader.

Each row becomes one OperationRecord. Column names are matched to the
record's field aliases; blank cells are treated as absent.
"""

import csv
import logging
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError as PydanticValidationError

from dbstage.core.exceptions import ConfigurationError
from dbstage.models.config import OperationRecord

logger = logging.getLogger(__name__)


def load_records(file_path: Union[str, Path]) -> List[OperationRecord]:
    """
    Load operation records from a CSV file.
    
    Args:
        file_path: Path to the operations CSV
    
    Returns:
        Records in file order
    
    Raises:
        ConfigurationError: If the file cannot be read or a row is malformed
    """
    file_path = Path(file_path)
    records: List[OperationRecord] = []
    
    try:
        with open(file_path, 'r', encoding='utf-8-sig', newline='') as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames:
                raise ConfigurationError(f"Operations file has no header row: {file_path}")
            
            # Line 1 is the header.
            for line_number, row in enumerate(reader, start=2):
                cleaned = {
                    key.strip(): value
                    for key, value in row.items()
                    if key is not None
                }
                if not any(isinstance(v, str) and v.strip() for v in cleaned.values()):
                    continue
                try:
                    records.append(OperationRecord.model_validate(cleaned))
                except PydanticValidationError as e:
                    raise ConfigurationError(
                        f"Invalid operation record on line {line_number} of {file_path}: {e}",
                        details={"line": line_number}
                    ) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read operations file {file_path}: {e}") from e
    
    seen = set()
    for record in records:
        if record.operation_id and record.operation_id in seen:
            logger.warning(f"Operation id {record.operation_id} appears more than once in {file_path}")
        seen.add(record.operation_id)
    
    logger.info(f"Loaded {len(records)} operation record(s) from {file_path}")
    return records
