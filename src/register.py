"""
Content registry.

Each content source is a directory holding one subfolder per model defined in
`objects` (`GoalDefinition/`, `SatisfactionDefinition/`, `InventoryKit/`).
Every `*.json` file in such a subfolder is validated into that model. Sources
are read in order, so a mod folder can replace a shipped definition by reusing
its id. Hidden folders and `meta/` (generated schemas) are never read.
"""
import inspect
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError

import objects

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
# Shipped definitions
LOCAL_CONTENT = PROJECT_ROOT / "content"
# Optional overrides, applied after the shipped content
MOD_PATHS = [PROJECT_ROOT / "content_custom" / name for name in ("modA", "modB")]

Registry = Dict[str, Union[List[BaseModel], Dict[str, BaseModel]]]


def is_content_folder(path: Path) -> bool:
    return path.is_dir() and path.name != "meta" and not path.name.startswith(".")


def load_models() -> Dict[str, type]:
    """Map model name -> class for every public Pydantic model in `objects`."""
    return {
        name: cls
        for name, cls in inspect.getmembers(objects, inspect.isclass)
        if not name.startswith("_") and issubclass(cls, BaseModel) and cls is not BaseModel
    }


def _read_definition(model_cls: type, path: Path) -> Optional[BaseModel]:
    try:
        return model_cls.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Error parsing %s: %s", path, e)
        return None


def register_content(folders: Iterable[Path]) -> Registry:
    """
    Build the registry from `folders`, in order.

    Models with an `id` field end up as `{id: instance}` dicts where the last
    source to define an id wins; any other model collects a plain list.
    Models nobody wrote content for are present but empty.
    """
    models = load_models()
    keyed = {name for name, cls in models.items() if "id" in cls.model_fields}
    registry: Registry = {name: ({} if name in keyed else []) for name in models}

    for folder in folders:
        if not folder.is_dir():
            continue
        for sub in sorted(p for p in folder.iterdir() if is_content_folder(p)):
            model_cls = models.get(sub.name)
            if model_cls is None:
                logger.debug("skipping unknown content folder %s", sub)
                continue
            bucket = registry[sub.name]
            for path in sorted(sub.glob("*.json")):
                definition = _read_definition(model_cls, path)
                if definition is None:
                    continue
                if isinstance(bucket, dict):
                    key = getattr(definition, "id")
                    if key in bucket:
                        logger.info("%s '%s' overridden by %s", sub.name, key, path)
                    bucket[key] = definition
                else:
                    bucket.append(definition)

    return registry


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    registry = register_content([LOCAL_CONTENT] + MOD_PATHS)
    for model_name, collection in registry.items():
        if collection:
            logger.info("Loaded %d %s entries.", len(collection), model_name)


if __name__ == "__main__":
    main()
