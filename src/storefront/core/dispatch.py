"""
Gateway Dispatch Table
Maps request paths to backend services through an ordered, immutable list of mount points
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.core.config import Settings

logger = logging.getLogger(__name__)


class DispatchRule(BaseModel):
    """A mount point and the backend it forwards to"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    prefix: str = Field(..., min_length=2, description="Mount point, e.g. /inventory")
    target: str = Field(..., description="Backend base URL, e.g. http://localhost:8081")
    name: str = Field(default="", description="Human-readable backend name")
    timeout: Optional[float] = Field(default=None, gt=0, le=300, description="Per-backend request timeout in seconds")

    @field_validator('prefix')
    @classmethod
    def validate_prefix(cls, v):
        """Mount points are absolute and carry no trailing slash"""
        if not v.startswith('/'):
            raise ValueError("Prefix must start with '/'")
        if v.endswith('/'):
            raise ValueError("Prefix must not end with '/'")
        return v

    @field_validator('target')
    @classmethod
    def validate_target(cls, v):
        """Targets must be absolute http(s) URLs"""
        if not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError("Target must start with http:// or https://")
        return v.rstrip('/')

    def match(self, path: str) -> Optional[str]:
        """Return the remainder path if ``path`` is under this mount point, else None"""
        if path == self.prefix:
            return ""
        if path.startswith(self.prefix + "/"):
            return path[len(self.prefix):]
        return None


@dataclass(frozen=True)
class ResolvedRoute:
    """Result of a successful lookup: the matched rule and the sub-path to forward"""

    rule: DispatchRule
    remainder: str

    @property
    def target(self) -> str:
        return self.rule.target


class DispatchTable:
    """Immutable, ordered set of dispatch rules; the first registered match wins"""

    def __init__(self, rules: Iterable[DispatchRule]):
        self._rules: Tuple[DispatchRule, ...] = tuple(rules)

        seen = set()
        for rule in self._rules:
            if rule.prefix in seen:
                logger.warning(
                    f"Duplicate mount point {rule.prefix}; the first registered rule wins",
                    extra={"prefix": rule.prefix, "target": rule.target}
                )
            seen.add(rule.prefix)

    @property
    def rules(self) -> Tuple[DispatchRule, ...]:
        return self._rules

    def resolve(self, path: str) -> Optional[ResolvedRoute]:
        """
        Find the backend for a request path

        Args:
            path: Raw request path (query string excluded)

        Returns:
            ResolvedRoute with the remainder path passed through unmodified,
            or None when no mount point matches
        """
        for rule in self._rules:
            remainder = rule.match(path)
            if remainder is not None:
                return ResolvedRoute(rule=rule, remainder=remainder)
        return None

    def __len__(self) -> int:
        return len(self._rules)


def default_rules(settings: Settings) -> List[DispatchRule]:
    """The two mount points of the storefront, built from settings"""
    return [
        DispatchRule(prefix="/inventory", target=settings.INVENTORY_SERVICE_URL, name="inventory"),
        DispatchRule(prefix="/orders", target=settings.ORDERS_SERVICE_URL, name="orders"),
    ]


def load_rules_file(path: Path) -> List[DispatchRule]:
    """
    Load dispatch rules from a YAML file

    Expected layout::

        routes:
          - prefix: /inventory
            target: http://localhost:8081

    Raises:
        yaml.YAMLError: If YAML is malformed
        ValueError: If the file has no routes or a rule is invalid
    """
    with open(path, 'r', encoding='utf-8') as f:
        config_data = yaml.safe_load(f)

    if not config_data or not config_data.get('routes'):
        raise ValueError(f"No routes defined in {path}")

    rules = []
    for index, route_config in enumerate(config_data['routes']):
        try:
            rules.append(DispatchRule(**route_config))
        except Exception as e:
            raise ValueError(f"Invalid route #{index} in {path}: {e}") from e
    return rules


def load_dispatch_table(settings: Settings) -> DispatchTable:
    """Build the dispatch table once at startup from the routes file or from settings"""
    routes_path = Path(settings.ROUTES_FILE)

    if routes_path.exists():
        logger.info(f"Loading routes from {routes_path}")
        rules = load_rules_file(routes_path)
    else:
        logger.info(f"Routes file not found: {routes_path}, using configured service URLs")
        rules = default_rules(settings)

    table = DispatchTable(rules)
    for rule in table.rules:
        logger.info(
            f"Mounted {rule.prefix} -> {rule.target}",
            extra={"prefix": rule.prefix, "target": rule.target, "name": rule.name}
        )
    return table
