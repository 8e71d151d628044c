"""
Command-line interface for DEM generation.

Usage:
    point2dem [options] POINT_CLOUD
    point2dem --config run.yaml [options]
"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import Config
from .errors import ConfigurationError, DataError, OutputError
from .pipeline import run_pipeline


# argparse dest -> (config section, field)
_OVERRIDES = {
    'texture_file': ('input', 'texture'),
    'output_prefix': ('output', 'prefix'),
    'output_filetype': ('output', 'filetype'),
    'normalized': ('output', 'normalized'),
    'offset_files': ('output', 'offset_files'),
    'reference_spheroid': ('datum', 'reference_spheroid'),
    'semi_major_axis': ('datum', 'semi_major_axis'),
    'semi_minor_axis': ('datum', 'semi_minor_axis'),
    'rotation_order': ('transform', 'rotation_order'),
    'phi_rotation': ('transform', 'phi'),
    'omega_rotation': ('transform', 'omega'),
    'kappa_rotation': ('transform', 'kappa'),
    'z_offset': ('transform', 'z_offset'),
    'xyz_to_lonlat': ('transform', 'xyz_to_lonlat'),
    'proj_lat': ('projection', 'center_lat'),
    'proj_lon': ('projection', 'center_lon'),
    'proj_scale': ('projection', 'scale'),
    'utm_south': ('projection', 'utm_south'),
    'dem_spacing': ('raster', 'spacing'),
    'default_value': ('raster', 'default_value'),
    'use_alpha': ('raster', 'use_alpha'),
    'max_edge_length': ('raster', 'max_edge_length'),
    'block_rows': ('raster', 'block_rows'),
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def build_parser() -> argparse.ArgumentParser:
    """
    Argument parser for point2dem.

    Options default to argparse.SUPPRESS so that only the ones given on
    the command line override the YAML configuration.
    """
    parser = argparse.ArgumentParser(
        prog='point2dem',
        description='Produce a georeferenced DEM or orthoimage from a point cloud',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        argument_default=argparse.SUPPRESS,
        epilog='''
Examples:
    # DEM at 1 m posts with an alpha mask
    point2dem run-PC.tif -s 1 --use-alpha

    # Mars sinusoidal DEM plus its normalized preview
    point2dem run-PC.tif --xyz-to-lonlat -r mars --sinusoidal -n

    # Orthoimage draped on the same surface
    point2dem run-PC.tif --orthoimage run-L.tif

    # Parameters from a YAML file, prefix overridden
    point2dem --config run.yaml -o results/site1
'''
    )

    parser.add_argument('point_clouds', nargs='*', default=[], metavar='POINT_CLOUD',
                        help='Point cloud raster or .npy file (exactly one)')

    io = parser.add_argument_group('input/output')
    io.add_argument('--config', '-c', type=str,
                    help='YAML configuration file; command-line options override it')
    io.add_argument('--input-file', type=str,
                    help='Point cloud file (alternative to the positional argument)')
    io.add_argument('--texture-file', type=str,
                    help='Grayscale texture for the orthoimage')
    io.add_argument('--orthoimage', type=str, metavar='TEXTURE',
                    help='Write an orthoimage (DRG) draped from TEXTURE instead of a DEM')
    io.add_argument('--output-prefix', '-o', type=str,
                    help='Prefix for output filenames (default: terrain)')
    io.add_argument('--output-filetype', '-t', type=str,
                    help='DEM file extension: tif, tiff, img or kea (default: tif)')
    io.add_argument('--normalized', '-n', action='store_true',
                    help='Also write an 8-bit normalized DEM')
    io.add_argument('--offset-files', action='store_true',
                    help='Also write the DRG and normalized-DEM offset files')

    raster = parser.add_argument_group('rasterization')
    raster.add_argument('--dem-spacing', '-s', type=float,
                        help='Post spacing in output units; 0 computes it from point density '
                             '(default: 0)')
    raster.add_argument('--default-value', type=float,
                        help='Value for posts without data (default: minimum elevation)')
    raster.add_argument('--use-alpha', action='store_true',
                        help='Mark posts without data as transparent')
    raster.add_argument('--max-edge-length', type=float,
                        help='Leave triangles with a longer edge unfilled')
    raster.add_argument('--block-rows', type=int,
                        help='Rows rasterized and written per block (default: 2048)')

    datum = parser.add_argument_group('datum')
    datum.add_argument('--reference-spheroid', '-r', type=str,
                       help='Spheroid preset: mars or moon')
    datum.add_argument('--semi-major-axis', type=float,
                       help='Explicit datum semi-major axis (m)')
    datum.add_argument('--semi-minor-axis', type=float,
                       help='Explicit datum semi-minor axis (m)')

    transform = parser.add_argument_group('point transforms')
    transform.add_argument('--xyz-to-lonlat', action='store_true',
                           help='Convert Cartesian points to lon/lat/height before rasterizing')
    transform.add_argument('--z-offset', type=float,
                           help='Add this value to every z coordinate')
    transform.add_argument('--rotation-order', type=str,
                           help='Euler axis order for the rotation (default: xyz)')
    transform.add_argument('--phi-rotation', type=float, help='Rotation angle phi (rad)')
    transform.add_argument('--omega-rotation', type=float, help='Rotation angle omega (rad)')
    transform.add_argument('--kappa-rotation', type=float, help='Rotation angle kappa (rad)')

    proj = parser.add_argument_group(
        'projection',
        'Used with --xyz-to-lonlat. If several are given, the first of sinusoidal, '
        'mercator, transverse-mercator, orthographic, stereographic, '
        'lambert-azimuthal, utm wins.'
    )
    for flag in ('sinusoidal', 'mercator', 'transverse-mercator', 'orthographic',
                 'stereographic', 'lambert-azimuthal'):
        proj.add_argument(f'--{flag}', dest='projections', action='append_const', const=flag,
                          help=f'Use the {flag.replace("-", " ")} projection')
    proj.add_argument('--utm', dest='utm_zone', type=int, metavar='ZONE',
                      help='Use UTM projection in ZONE')
    proj.add_argument('--utm-south', action='store_true',
                      help='UTM zone is in the southern hemisphere')
    proj.add_argument('--proj-lat', type=float, help='Projection center latitude (deg)')
    proj.add_argument('--proj-lon', type=float, help='Projection center longitude (deg)')
    proj.add_argument('--proj-scale', type=float, help='Projection scale factor')

    parser.add_argument('--verbose', '-v', action='store_true', default=False,
                        help='Enable verbose output')
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """Merge parsed arguments over the YAML configuration, if any."""
    given = vars(args)
    config = Config.from_yaml(given['config']) if 'config' in given else Config()

    inputs: List[str] = list(given.get('point_clouds', []))
    if 'input_file' in given:
        inputs.append(given['input_file'])
    if len(inputs) > 1:
        raise ConfigurationError(f"Expected exactly one point cloud, got {len(inputs)}: {inputs}")
    if inputs:
        config.input.point_cloud = inputs[0]
    if not config.input.point_cloud:
        raise ConfigurationError("No point cloud file given")

    for dest, (section, name) in _OVERRIDES.items():
        if dest in given:
            setattr(getattr(config, section), name, given[dest])

    if 'orthoimage' in given:
        config.output.orthoimage = True
        config.input.texture = given['orthoimage']

    kinds = list(given.get('projections', []))
    if 'utm_zone' in given:
        config.projection.utm_zone = given['utm_zone']
        kinds.append('utm')
    if kinds:
        config.projection.kinds = kinds
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # --help exits 0, usage errors exit 2
        return e.code if isinstance(e.code, int) else 0

    # Setup logging
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = config_from_args(args)
        bundle = run_pipeline(config)
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except DataError as e:
        logger.error(f"Data error: {e}")
        return 1
    except OutputError as e:
        logger.error(f"Output error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1

    if not bundle.ok:
        logger.error(f"{len(bundle.errors)} output(s) failed")
        return 1
    logger.info(f"Wrote {len(bundle.written)} file(s)")
    return 0


if __name__ == '__main__':
    sys.exit(main())
