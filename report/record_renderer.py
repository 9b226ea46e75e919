"""
Record Renderer Module
Renders a record document as commented JSON (JSONC) using Jinja2 templates.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

TEMPLATE_DIR = Path(__file__).parent / 'templates'
RECORD_TEMPLATE = 'record.jsonc.j2'

FIELD_COMMENTS = {
    'version': 'Record format version',
    'mode': 'Screenshot mode: "single" or "before-after"',
    'waitStrategy': 'Page load strategy used',
    'width': 'Viewport width',
    'height': 'Viewport height',
    'timeout': 'Page timeout in ms',
    'maxRetries': 'Retry attempts for failures',
    'retryDelay': 'Delay between retries in ms',
    'duration': 'Human-readable duration',
    'singlePath': 'Relative path to screenshot',
    'beforePath': 'Relative path to before screenshot',
    'afterPath': 'Relative path to after screenshot',
    'error': 'Error message if failed',
    'diffPercentage': 'Share of differing pixels, in percent',
    'changeLevel': 'none, minimal, minor, moderate, major or extreme',
    'diffImagePath': 'Relative path to diff image',
}

# Comments that go on their own line above a field
SECTION_NOTES = {
    'version': 'Basic report information',
    'options': 'Original command options used',
    'beforePhase': 'Before/after phase timing',
    'comparison': 'Pixel comparison of the before and after screenshots',
}

MODE_TITLES = {
    'single': 'Single Screenshot Mode',
    'before-after': 'Before/After Mode',
}


@dataclass
class Field:
    key: str
    value: Any = None
    comment: Optional[str] = None
    note: Optional[str] = None
    children: Optional[List['Field']] = None


def _json_value(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class RecordRenderer:
    """Turns a plain record document into annotated JSONC text.

    Comments are derived from the field names every time; the renderer never
    sees comments from an earlier version of the file.
    """

    def __init__(self, template_dir: Path = TEMPLATE_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.env.filters['jsonc'] = _json_value
        self.template = self.env.get_template(RECORD_TEMPLATE)

    def render(self, document: Dict[str, Any]) -> str:
        metadata = document['metadata']
        mode = metadata.get('mode')
        header = [
            f"Screenshot Report Data - {MODE_TITLES.get(mode, mode)}",
            f"Generated: {metadata.get('generatedAt', 'unknown')}",
            'This file contains all data needed to regenerate reports without retaking screenshots',
            'Comments are rewritten on every save; edit values only',
        ]
        return self.template.render(
            header=header,
            metadata=self._fields(metadata, mode),
            results=[self._fields(result, mode) for result in document['results']],
        )

    def _fields(self, obj: Dict[str, Any], mode: Optional[str]) -> List[Field]:
        fields = []
        for key, value in obj.items():
            note = SECTION_NOTES.get(key)
            if isinstance(value, dict):
                fields.append(Field(key=key, note=note, children=self._fields(value, mode)))
            else:
                fields.append(Field(key=key, value=value, note=note, comment=self._comment(key, mode)))
        return fields

    def _comment(self, key: str, mode: Optional[str]) -> Optional[str]:
        if key == 'success' and mode == 'before-after':
            return 'Overall success (both phases succeeded)'
        return FIELD_COMMENTS.get(key)
