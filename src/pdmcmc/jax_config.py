"""
JAX Configuration - MUST be imported before any JAX imports.

This module sets environment variables for JAX configuration including:
- 64-bit floating point (trajectory root finding needs double precision)
- Persistent compilation cache directory
- Minimum compile time threshold for caching
"""
import os
from pathlib import Path

# --- DOUBLE PRECISION ---
# Event times are found in closed form; float32 cancellation is visible
# in the switch-time quadratic and in collision times.
os.environ.setdefault("JAX_ENABLE_X64", "1")

# --- PERSISTENT COMPILATION CACHE ---
# Enables cross-session caching of compiled log-density gradients
_JAX_CACHE_DIR = Path.home() / ".cache" / "jax" / "pdmcmc_cache"
_JAX_CACHE_DIR.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("JAX_COMPILATION_CACHE_DIR", str(_JAX_CACHE_DIR))
os.environ.setdefault("JAX_PERSISTENT_CACHE_MIN_COMPILE_TIME_SECS", "1.0")
