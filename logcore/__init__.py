"""
logcore: structured JSON logging for Sentinel services

Every hub and agent record is emitted as one JSON line so that log shippers can
index the `context` block (agent ids, cycle counts) without regex parsing.
"""

from logcore.logger import JSONFormatter, get_logger, setup_logging

__all__ = ['JSONFormatter', 'get_logger', 'setup_logging']
__version__ = '1.0.0'
