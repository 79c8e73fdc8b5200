"""Plugin descriptor model - describes a plugin's metadata and configuration."""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

PLUGIN_CATEGORIES = (
    "ai",
    "automation",
    "tools",
    "media",
    "development",
    "social",
    "productivity",
    "security",
    "utility",
)

PLUGIN_STATUSES = ("active", "inactive", "pending", "deprecated", "beta")


def slugify(name: str) -> str:
    """Filesystem-safe folder name for a plugin, e.g. 'Hello World' -> 'hello-world'."""
    return re.sub(r"[^a-z0-9]", "-", name.lower())


def identity_key(name: str, version: str) -> str:
    return f"{name}@{version}"


class PluginDescriptor(BaseModel):
    """Plugin descriptor loaded from plugin.json or from a persisted record.

    Field aliases keep the camelCase spelling used in plugin.json files.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., description="Unique plugin name")
    version: str = Field(default="1.0.0", description="Plugin version, MAJOR.MINOR.(PATCH|*)")
    description: str = Field(default="", description="Plugin description")
    route: str = Field(..., description="Route the plugin is served under, e.g. '/image-tools'")
    category: str = Field(default="utility", description="One of PLUGIN_CATEGORIES")
    author: str = Field(default="NexusCore")
    icon: str = Field(default="box")
    tags: List[str] = Field(default_factory=list)
    active: bool = Field(default=True, description="Registered and routable")
    featured: bool = Field(default=False, description="Promoted in discovery listings")
    status: str = Field(default="active", description="One of PLUGIN_STATUSES")
    dependencies: List[str] = Field(
        default_factory=list,
        description="Python modules the plugin needs at runtime",
    )
    config: Dict[str, Any] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    has_view: bool = Field(default=False, alias="hasView")
    installed_at: Optional[datetime] = Field(default=None, alias="installedAt")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")

    # Runtime only: attached by the loader, never persisted or serialized.
    controller: Any = Field(default=None, exclude=True, repr=False)

    @property
    def key(self) -> str:
        """Identity key used by the registry and the cache."""
        return identity_key(self.name, self.version)

    @property
    def slug(self) -> str:
        return slugify(self.name)

    def to_dict(self) -> dict:
        """Serialize descriptor to dict for API responses and plugin.json files."""
        return self.model_dump(mode="json", by_alias=True)
