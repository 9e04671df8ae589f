"""
Whole record persistence of Basin objects, one pickle per pour point id
"""

import os
import pickle
import re
import tempfile
from pathlib import Path

from loguru import logger

BASIN_FILE_PATTERN = re.compile(r"^Basin_(-?\d+)_Data\.pkl$")


def basin_path(directory, basin_id):
    return Path(directory) / f"Basin_{basin_id}_Data.pkl"


def save_basin(basin, directory):
    """
    Write a Basin atomically: a temporary file in the target directory is
    renamed over the final path, so a file either holds a full record or does
    not exist.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = basin_path(directory, basin.id)
    fd, temp_name = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            pickle.dump(basin, f, protocol=pickle.HIGHEST_PROTOCOL)
        os.replace(temp_name, path)
    except BaseException:
        if os.path.exists(temp_name):
            os.remove(temp_name)
        raise
    logger.debug(f"Saved basin {basin.id} to {path}")
    return path


def load_basin(path):
    with open(path, "rb") as f:
        return pickle.load(f)


def completed_basin_ids(directory):
    """Pour point ids with a saved record in directory."""
    directory = Path(directory)
    if not directory.is_dir():
        return set()
    ids = set()
    for path in directory.iterdir():
        match = BASIN_FILE_PATTERN.match(path.name)
        if match:
            ids.add(int(match.group(1)))
    return ids


def load_basins(directory):
    """All saved basins in directory, sorted by id."""
    return [
        load_basin(basin_path(directory, basin_id))
        for basin_id in sorted(completed_basin_ids(directory))
    ]
