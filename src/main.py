"""
Command line entry point for the visual target detection engine.

Usage:
    python src/main.py --config config/config.yaml models
    python src/main.py provision yolov8n
    python src/main.py uninstall yolov8n
    python src/main.py template --template button.png --image screen.png [--multi] [--output out.png]
    python src/main.py yolo --model yolov8n --image screen.png [--object person] [--output out.png]

Arguments:
    --config: Path to configuration file (layered over config/default.yaml)
    --origin: Global top-left of the image on the virtual desktop (X Y)
    --output: Write an annotated preview image
"""

import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import cv2
import yaml

from capture.sources import ImageFileSource
from detection.draw import draw_detection_result
from detection.template_matching import TemplateMatcher
from detection.yolo_manager import YoloManager
from models.config import Config
from models.detection import DetectionResult
from models.errors import DetectionEngineError, InvalidArgumentError
from ops.logging import VALID_LOG_LEVELS, setup_logging
from pipeline.engine import DetectionLoop, LoopConfig
from provisioning.downloader import ModelProvisioner
from screen.mapper import VirtualDesktop


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        # Finally apply explicit config_path if it's not the local override file itself
        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    for section in ("template", "yolo", "provisioning"):
        if section in config and not isinstance(config[section], dict):
            return False, f"{section} must be a mapping"

    template = config.get("template", {}) or {}
    if "threshold" in template:
        t = template["threshold"]
        if isinstance(t, bool) or not isinstance(t, (int, float)) or not 0 <= t <= 1:
            return False, "template.threshold must be a number between 0 and 1"
    if "suppression_radius" in template:
        r = template["suppression_radius"]
        if isinstance(r, bool) or not isinstance(r, int) or r < 0:
            return False, "template.suppression_radius must be a non-negative integer"

    provisioning = config.get("provisioning", {}) or {}
    for key in ("model_dir", "registry_path"):
        if key in provisioning and (not isinstance(provisioning[key], str) or not provisioning[key]):
            return False, f"provisioning.{key} must be a non-empty string"
    if "chunk_size" in provisioning:
        c = provisioning["chunk_size"]
        if isinstance(c, bool) or not isinstance(c, int) or c <= 0:
            return False, "provisioning.chunk_size must be a positive integer"
    if "timeout_seconds" in provisioning:
        t = provisioning["timeout_seconds"]
        if isinstance(t, bool) or not isinstance(t, (int, float)) or t <= 0:
            return False, "provisioning.timeout_seconds must be a positive number"

    desktop = config.get("desktop") or {}
    if not isinstance(desktop, dict):
        return False, "desktop must be a mapping"
    monitors = desktop.get("monitors") or []
    if not isinstance(monitors, list):
        return False, "desktop.monitors must be a list of [left, top, width, height]"
    for m in monitors:
        if not isinstance(m, list) or len(m) != 4 or not all(isinstance(v, int) for v in m):
            return False, "desktop.monitors entries must be [left, top, width, height] integers"
        if m[2] <= 0 or m[3] <= 0:
            return False, "desktop.monitors width and height must be positive"

    if config.get("log_level", "INFO") not in VALID_LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}"

    # Enum values, ranges and input_size
    try:
        TemplateMatcher.from_config(Config.from_dict(config).template)
    except InvalidArgumentError as e:
        return False, str(e)

    return True, None


def build_desktop(cfg: Config) -> Optional[VirtualDesktop]:
    if cfg.desktop is None or not cfg.desktop.monitors:
        return None
    return VirtualDesktop.from_config(cfg.desktop.monitors)


def _print_results(results: List[DetectionResult], desktop: Optional[VirtualDesktop]) -> None:
    hits = [r for r in results if r.success]
    if not hits:
        best = max((r.confidence for r in results), default=0.0)
        print(f"No match (best confidence {best:.1f}%)")
        return

    for r in hits:
        label = f" {r.label}" if r.label else ""
        line = f"Match{label}: center={r.center_point_in_image} confidence={r.confidence:.1f}%"
        if desktop is not None:
            ax, ay = r.center_point_on_desktop
            line += f" desktop=({ax:.0f}, {ay:.0f})"
        print(line)
        for p in r.points[1:]:
            print(f"  also at {p}")


def _write_preview(path: Optional[str], frame, results: List[DetectionResult]) -> None:
    if not path:
        return
    annotated = draw_detection_result(frame, results)
    if not cv2.imwrite(path, annotated):
        logging.error(f"Failed to write preview image: {path}")
    else:
        logging.info(f"Preview written to {path}")


def cmd_models(provisioner: ModelProvisioner) -> int:
    if not provisioner.registry:
        print("No models declared in the registry")
        return 0
    for name in sorted(provisioner.registry, key=str.lower):
        entry = provisioner.registry[name]
        state = "installed" if provisioner.is_installed(name) else "not installed"
        size_mb = entry.size / (1024 * 1024) if entry.size else 0.0
        print(f"{name:<24} {state:<14} {size_mb:8.1f} MB  {entry.url}")
    return 0


def cmd_provision(name: str, provisioner: ModelProvisioner) -> int:
    unsubscribe = provisioner.subscribe(lambda event: print(event))
    try:
        model = provisioner.provision(name)
    finally:
        unsubscribe()
    print(f"{model.name}: {model.path} sha256={model.sha256}")
    return 0


def cmd_uninstall(name: str, provisioner: ModelProvisioner) -> int:
    removed = provisioner.uninstall(name)
    print(f"{name}: {'removed' if removed else 'not installed'}")
    return 0 if removed else 1


def cmd_template(args, cfg: Config, desktop: Optional[VirtualDesktop]) -> int:
    matcher = TemplateMatcher.from_config(cfg.template)
    if args.multi:
        matcher.enable_multiple_points()
    if args.threshold is not None:
        matcher.set_threshold(args.threshold)
    matcher.set_template(args.template)

    source = ImageFileSource(args.image, origin=tuple(args.origin))
    loop = DetectionLoop(source, matcher, desktop, LoopConfig(max_frames=1, max_consecutive_failures=1))

    captured: List[Tuple[Any, List[DetectionResult]]] = []
    loop.add_callback(lambda frame_data, results: captured.append((frame_data.frame, results)))
    loop.run()

    if not captured:
        logging.error(f"No frame read from {args.image}")
        return 1
    frame, results = captured[0]
    _print_results(results, desktop)
    _write_preview(args.output, frame, results)
    return 0 if any(r.success for r in results) else 2


def cmd_yolo(args, cfg: Config, provisioner: ModelProvisioner, desktop: Optional[VirtualDesktop]) -> int:
    source = ImageFileSource(args.image, origin=tuple(args.origin))
    with source:
        frame_data = source.read()

    threshold = args.threshold if args.threshold is not None else cfg.yolo.conf_threshold
    with YoloManager(provisioner, cfg.yolo) as manager:
        manager.subscribe(lambda event: print(event))
        if args.object:
            results = [manager.detect(args.model, args.object, frame_data.frame, threshold)]
        else:
            detector = manager.ensure_model(args.model)
            results = detector.detect(frame_data.frame, conf_threshold=threshold)

    if desktop is not None:
        results = [r.map_to_desktop(desktop, frame_data.origin) for r in results]
    _print_results(results, desktop)
    _write_preview(args.output, frame_data.frame, results)
    return 0 if any(r.success for r in results) else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Visual target detection engine")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("models", help="List registry models and install state")

    p = sub.add_parser("provision", help="Download and verify a model")
    p.add_argument("name")

    p = sub.add_parser("uninstall", help="Remove an installed model")
    p.add_argument("name")

    for name, help_text in (("template", "Find a template image"), ("yolo", "Run a YOLO model")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--image", required=True, help="Image to search")
        p.add_argument("--origin", type=int, nargs=2, default=[0, 0], metavar=("X", "Y"),
                       help="Global top-left of the image on the virtual desktop")
        p.add_argument("--threshold", type=float, default=None, help="Override the confidence threshold (0-1)")
        p.add_argument("--output", type=str, default=None, help="Write an annotated preview image")
        if name == "template":
            p.add_argument("--template", required=True, help="Template image")
            p.add_argument("--multi", action="store_true", help="Report every match")
        else:
            p.add_argument("--model", required=True, help="Registry model name")
            p.add_argument("--object", type=str, default=None, help="Only report the best match of this class")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main application function."""
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        return 1

    cfg = Config.from_dict(config)
    setup_logging(cfg.log_path, cfg.log_level)

    try:
        desktop = build_desktop(cfg)
        if args.command == "template":
            return cmd_template(args, cfg, desktop)

        provisioner = ModelProvisioner.from_config(cfg.provisioning)
        if args.command == "models":
            return cmd_models(provisioner)
        if args.command == "provision":
            return cmd_provision(args.name, provisioner)
        if args.command == "uninstall":
            return cmd_uninstall(args.name, provisioner)
        return cmd_yolo(args, cfg, provisioner, desktop)
    except (DetectionEngineError, RuntimeError) as e:
        logging.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
