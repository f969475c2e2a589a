# src/content_env.py
"""
Generates JSON Schema files for the content models found in src/objects.py,
placing each schema under content/meta/<ClassName>/schema.json
"""
import json
import logging
from pathlib import Path
from typing import List, Optional

from register import LOCAL_CONTENT, load_models

logger = logging.getLogger(__name__)

# Models authors write JSON for; runtime-only models are skipped
CONTENT_MODELS = ("GoalDefinition", "SatisfactionDefinition", "InventoryKit")


def export_schemas(content_root: Optional[Path] = None) -> List[Path]:
    output_base = (content_root or LOCAL_CONTENT) / "meta"
    output_base.mkdir(parents=True, exist_ok=True)

    written: List[Path] = []
    models = load_models()
    for name in CONTENT_MODELS:
        cls = models[name]
        schema_dict = cls.model_json_schema()

        model_dir = output_base / name
        model_dir.mkdir(parents=True, exist_ok=True)

        schema_file = model_dir / "schema.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(schema_dict, f, indent=2)

        logger.info("Wrote schema for '%s' to %s", name, schema_file)
        written.append(schema_file)
    return written


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    export_schemas()


if __name__ == "__main__":
    main()
