"""
Base component class for all lifecycle engine components.
"""

from typing import Any, Dict, Optional
from datetime import datetime, timezone
from loguru import logger

from .config import config


class BaseComponent:
    """
    Base class for engine components.
    
    Gives every component a name, a bound logger and access to its own
    configuration section so thresholds can be tuned without code changes.
    """
    
    def __init__(self, name: str, config_section: Optional[str] = None):
        """
        Initialize the component.
        
        Args:
            name: Component name for logging and identification
            config_section: Configuration section to load component-specific settings
        """
        self.name = name
        self.config_section = config_section
        self.logger = logger.bind(component=name)
        
        if config_section:
            self.component_config = config.get_section(config_section)
        else:
            self.component_config = {}
        
        self.logger.debug(f"Initialized component: {name}")
    
    def get_config_value(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value for this component.
        
        Args:
            key: Configuration key
            default: Default value if key not found
            
        Returns:
            Configuration value
        """
        if self.config_section:
            full_key = f"{self.config_section}.{key}"
            return config.get(full_key, default)
        return default
    
    def log_execution_start(self, operation: str, inputs: Dict[str, Any]) -> datetime:
        """Log the start of an operation."""
        start_time = datetime.now(timezone.utc)
        self.logger.debug(
            f"Starting {operation} in {self.name}",
            inputs_keys=list(inputs.keys())
        )
        return start_time
    
    def log_execution_end(self, operation: str, start_time: datetime, success: bool = True) -> float:
        """
        Log the end of an operation and return execution time.
        
        Args:
            operation: Operation name
            start_time: When execution started
            success: Whether execution was successful
            
        Returns:
            Execution time in milliseconds
        """
        end_time = datetime.now(timezone.utc)
        execution_time_ms = (end_time - start_time).total_seconds() * 1000
        
        log_level = "debug" if success else "error"
        getattr(self.logger, log_level)(
            f"Completed {operation} in {self.name}",
            execution_time_ms=execution_time_ms,
            success=success
        )
        
        return execution_time_ms
