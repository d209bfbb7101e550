"""
Configuration and information functions for the kraskov_mi module.
"""

import numpy as np
from typing import Any, Dict, List, Optional
import os

# Property names
PROP_K = 'k'
PROP_ALGORITHM = 'algorithm'
PROP_NORMALISE = 'normalise'
PROP_ADD_NOISE = 'add-noise'
PROP_NOISE_SEED = 'noise-seed'
PROP_DYN_CORR_EXCL_TIME = 'dyn-corr-excl-time'
PROP_NUM_THREADS = 'num-threads'

USE_ALL_THREADS = 'all'
UNSEEDED = 'unseeded'

# Default parameters
k_default = 4

_defaults = {
    PROP_K: k_default,
    PROP_ALGORITHM: 1,
    PROP_NORMALISE: True,
    PROP_ADD_NOISE: 1e-8,
    PROP_NOISE_SEED: None,      # unseeded
    PROP_DYN_CORR_EXCL_TIME: 0,
    PROP_NUM_THREADS: -1,       # -1 for all cores
}

# Properties whose change requires rebuilding the neighbour index
GEOMETRY_PROPERTIES = (PROP_K, PROP_NORMALISE, PROP_ADD_NOISE,
                       PROP_NOISE_SEED, PROP_DYN_CORR_EXCL_TIME)

_aliases = {
    'normalize': PROP_NORMALISE,
    'noise': PROP_ADD_NOISE,
    'noise-level': PROP_ADD_NOISE,
    'theiler': PROP_DYN_CORR_EXCL_TIME,
    'threads': PROP_NUM_THREADS,
}

# Last computation info
_last_info = {
    'average': 0.0,
    'std': 0.0,
    'n_errors': 0,
    'n_eff': 0,
    'n_sets': 0,
    'Theiler': 0,
    'n_threads': 0,
}

_verbosity = 1


def get_last_info(verbosity: int = 0) -> List:
    """
    Returns information from the last computation.

    Parameters
    ----------
    verbosity : int
        If > 0, print information to console

    Returns
    -------
    List
        [average, std, n_errors, n_eff, n_sets, Theiler, n_threads]
    """
    if verbosity > 0:
        print("from last function call:")
        print(f"- average of local values:    {_last_info['average']:.8f}")
        print(f"- standard deviation:         {_last_info['std']:.6f}")
        print(f"- nb of errors encountered:   {_last_info['n_errors']}")
        print(f"- effective nb of points:     {_last_info['n_eff']} (in {_last_info['n_sets']} observation sets)")
        print(f"- Theiler scale               {_last_info['Theiler']}")
        print(f"- threads used                {_last_info['n_threads']}")

    return [
        _last_info['average'],
        _last_info['std'],
        _last_info['n_errors'],
        _last_info['n_eff'],
        _last_info['n_sets'],
        _last_info['Theiler'],
        _last_info['n_threads'],
    ]


def set_verbosity(level: int = 1) -> None:
    """
    Set the verbosity level of the library.

    Parameters
    ----------
    level : int
        Verbosity level (0=errors only, 1=warnings, 2+=more detail)
    """
    global _verbosity
    _verbosity = int(level)


def get_verbosity() -> int:
    """Get the current verbosity level."""
    return _verbosity


def get_defaults() -> Dict[str, Any]:
    """Return a copy of the current default properties."""
    return dict(_defaults)


def choose_algorithm(algo: int = 1) -> None:
    """
    Select the default Kraskov algorithm for new calculators.

    Parameters
    ----------
    algo : int
        Kraskov algorithm: 1 or 2
    """
    _defaults[PROP_ALGORITHM] = parse_property(PROP_ALGORITHM, algo)[1]


def set_Theiler(Theiler: int = 0) -> None:
    """
    Set the default dynamic correlation exclusion (Theiler) window.

    Parameters
    ----------
    Theiler : int
        Same-set points closer in time than this (inclusive) are never
        counted as neighbours. 0 only excludes the point itself.
    """
    _defaults[PROP_DYN_CORR_EXCL_TIME] = parse_property(PROP_DYN_CORR_EXCL_TIME, Theiler)[1]
    if _verbosity > 1:
        print(f"now using Theiler window {_defaults[PROP_DYN_CORR_EXCL_TIME]}")


def multithreading(do_what="info", nb_cores: int = 0) -> None:
    """
    Configure multithreading.

    Parameters
    ----------
    do_what : str or int
        "info": display current settings
        "auto": use all available cores
        "single": single-threaded
        int > 0: use this many cores
    nb_cores : int
        If > 0, use this many cores (whatever do_what is)
    """
    if nb_cores > 0:
        _defaults[PROP_NUM_THREADS] = int(nb_cores)
    elif do_what == "info":
        avail = os.cpu_count() or 1
        current = resolve_threads(_defaults[PROP_NUM_THREADS])
        print(f"currently using {current} out of {avail} cores available")
        if _defaults[PROP_NUM_THREADS] == -1:
            print(f" (-1 means largest number available, so {avail} here)")
    elif do_what == "auto":
        _defaults[PROP_NUM_THREADS] = -1
    elif do_what == "single":
        _defaults[PROP_NUM_THREADS] = 1
    elif isinstance(do_what, int) and not isinstance(do_what, bool) and do_what > 0:
        _defaults[PROP_NUM_THREADS] = do_what
    else:
        raise ValueError("invalid parameter value")


def resolve_threads(n_threads: int) -> int:
    """Turn a thread setting (-1 for all cores) into a worker count."""
    if n_threads == -1:
        return os.cpu_count() or 1
    return n_threads


def get_threads_number() -> int:
    """Get the current default number of threads."""
    return resolve_threads(_defaults[PROP_NUM_THREADS])


def property_key(key: str) -> str:
    """Canonical form of a property name."""
    if not isinstance(key, str):
        raise ValueError(f"property name must be a string, not {type(key).__name__}")
    name = key.strip().lower().replace('_', '-')
    name = _aliases.get(name, name)
    if name not in _defaults:
        raise ValueError(f"unknown property '{key}'")
    return name


def _parse_int(name: str, value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"{name} must be an integer, got {value!r}")


def _parse_bool(name: str, value) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ('true', 'yes', '1', 'on'):
            return True
        if v in ('false', 'no', '0', 'off'):
            return False
    raise ValueError(f"{name} must be true or false, got {value!r}")


def _parse_k(value) -> int:
    k = _parse_int(PROP_K, value)
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    return k


def _parse_algorithm(value) -> int:
    algo = _parse_int(PROP_ALGORITHM, value)
    if algo not in (1, 2):
        raise ValueError(f"algorithm must be 1 or 2, got {algo}")
    return algo


def _parse_noise(value) -> float:
    if isinstance(value, bool):
        raise ValueError(f"noise level must be a real number, got {value!r}")
    try:
        level = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"noise level must be a real number, got {value!r}") from None
    if not np.isfinite(level) or level < 0:
        raise ValueError(f"noise level must be finite and >= 0, got {value!r}")
    return level


def _parse_seed(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in (UNSEEDED, 'none'):
        return None
    seed = _parse_int(PROP_NOISE_SEED, value)
    if seed < 0:
        raise ValueError(f"noise seed must be >= 0, got {seed}")
    return seed


def _parse_window(value) -> int:
    w = _parse_int(PROP_DYN_CORR_EXCL_TIME, value)
    if w < 0:
        raise ValueError(f"exclusion window must be >= 0, got {w}")
    return w


def _parse_threads(value) -> int:
    if isinstance(value, str) and value.strip().lower() in (USE_ALL_THREADS, 'use_all', 'use-all', 'auto'):
        return -1
    n = _parse_int(PROP_NUM_THREADS, value)
    if n == -1:
        return -1
    if n < 1:
        raise ValueError(f"number of threads must be >= 1 or 'all', got {n}")
    return n


_parsers = {
    PROP_K: _parse_k,
    PROP_ALGORITHM: _parse_algorithm,
    PROP_NORMALISE: lambda v: _parse_bool(PROP_NORMALISE, v),
    PROP_ADD_NOISE: _parse_noise,
    PROP_NOISE_SEED: _parse_seed,
    PROP_DYN_CORR_EXCL_TIME: _parse_window,
    PROP_NUM_THREADS: _parse_threads,
}


def parse_property(key: str, value) -> tuple:
    """
    Validate a property.

    Parameters
    ----------
    key : str
        Property name (case-insensitive, '_' or '-')
    value : str or native value
        Property value

    Returns
    -------
    tuple
        (canonical name, parsed value)
    """
    name = property_key(key)
    return name, _parsers[name](value)


def format_property(name: str, value) -> str:
    """String form of a parsed property value."""
    if name == PROP_NOISE_SEED and value is None:
        return UNSEEDED
    if name == PROP_NUM_THREADS and value == -1:
        return USE_ALL_THREADS
    if name == PROP_NORMALISE:
        return 'true' if value else 'false'
    return str(value)
