"""
Configuration module for DEM generation.

Run parameters are grouped into dataclasses and can be loaded from (or
saved to) a YAML file. Command-line options override YAML values.
"""

import yaml
from pathlib import Path
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import logging

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class InputConfig:
    """Input files."""
    point_cloud: Optional[str] = None  # (rows, cols, 3) raster or .npy
    texture: Optional[str] = None  # Grayscale raster on the same footprint


@dataclass
class OutputConfig:
    """Output naming and optional products."""
    prefix: str = "terrain"
    filetype: str = "tif"
    orthoimage: bool = False  # Write <prefix>-DRG.tif instead of the DEM
    normalized: bool = False  # Also write <prefix>-DEM-normalized.tif
    offset_files: bool = False  # Also write the two .offset files


@dataclass
class DatumConfig:
    """Datum override: a preset keyword or explicit axes."""
    reference_spheroid: Optional[str] = None  # "mars" or "moon"
    semi_major_axis: Optional[float] = None  # meters
    semi_minor_axis: Optional[float] = None  # meters


@dataclass
class TransformConfig:
    """Point transforms applied before rasterization."""
    rotation_order: str = "xyz"
    phi: float = 0.0  # radians
    omega: float = 0.0  # radians
    kappa: float = 0.0  # radians
    z_offset: float = 0.0  # meters
    xyz_to_lonlat: bool = False


@dataclass
class ProjectionConfig:
    """Requested projection(s) and their parameters."""
    kinds: List[str] = field(default_factory=list)
    center_lat: float = 0.0
    center_lon: float = 0.0
    scale: float = 1.0
    utm_zone: Optional[int] = None
    utm_south: bool = False


@dataclass
class RasterConfig:
    """Rasterization policies."""
    spacing: float = 0.0  # 0 = computed from point density
    default_value: Optional[float] = None  # None = use the minimum elevation
    use_alpha: bool = False
    max_edge_length: Optional[float] = None  # drop longer triangles
    block_rows: int = 2048


@dataclass
class Config:
    """
    Main configuration for a DEM generation run.

    Example YAML structure:
        input:
          point_cloud: "run-PC.tif"
          texture: "run-L.tif"
        output:
          prefix: "results/terrain"
          filetype: tif
          orthoimage: false
          normalized: true
          offset_files: false
        datum:
          reference_spheroid: mars
        transform:
          rotation_order: xyz
          phi: 0.0
          omega: 0.0
          kappa: 0.0
          z_offset: 0.0
          xyz_to_lonlat: true
        projection:
          kinds: [sinusoidal]
          center_lon: 137.4
        raster:
          spacing: 0.0
          default_value: null
          use_alpha: true
    """
    input: InputConfig = field(default_factory=InputConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    datum: DatumConfig = field(default_factory=DatumConfig)
    transform: TransformConfig = field(default_factory=TransformConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    raster: RasterConfig = field(default_factory=RasterConfig)

    _SECTIONS = {
        "input": InputConfig,
        "output": OutputConfig,
        "datum": DatumConfig,
        "transform": TransformConfig,
        "projection": ProjectionConfig,
        "raster": RasterConfig,
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a Config from nested section dictionaries."""
        sections = {}
        for name, section_cls in cls._SECTIONS.items():
            values = data.get(name) or {}
            if not isinstance(values, dict):
                raise ConfigurationError(f"Config section '{name}' must be a mapping")
            try:
                sections[name] = section_cls(**values)
            except TypeError as e:
                raise ConfigurationError(f"Invalid keys in config section '{name}': {e}") from e

        unknown = set(data) - set(cls._SECTIONS)
        if unknown:
            raise ConfigurationError(f"Unknown config sections: {sorted(unknown)}")

        # a single projection may be given as a plain string
        if isinstance(sections["projection"].kinds, str):
            sections["projection"].kinds = [sections["projection"].kinds]
        return cls(**sections)

    @classmethod
    def from_yaml(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Input paths and the output prefix are resolved relative to the
        directory of the YAML file.
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {config_path} is not a mapping")

        logger.info(f"Loading configuration from {config_path}")
        config = cls.from_dict(data)

        config_dir = path.parent
        if config.input.point_cloud:
            config.input.point_cloud = str(config_dir / config.input.point_cloud)
        if config.input.texture:
            config.input.texture = str(config_dir / config.input.texture)
        config.output.prefix = str(config_dir / config.output.prefix)
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {name: asdict(getattr(self, name)) for name in self._SECTIONS}

    def to_yaml(self, config_path: str) -> None:
        """Save configuration to a YAML file."""
        with open(config_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {config_path}")
