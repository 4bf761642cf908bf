"""Shared fixtures: small on-disk Angular projects."""

import json
import os

import pytest


def write_project(root, dependencies=None, dev_dependencies=None, files=None):
    """Create a project under ``root`` and return its path as a string."""
    root = str(root)
    os.makedirs(root, exist_ok=True)
    manifest = {
        "name": "demo-app",
        "version": "0.0.0",
        "dependencies": dict(dependencies or {}),
        "devDependencies": dict(dev_dependencies or {}),
    }
    with open(os.path.join(root, "package.json"), "w", encoding="utf-8") as fh:
        json.dump(manifest, fh, indent=2)
        fh.write("\n")
    for rel, content in (files or {}).items():
        path = os.path.join(root, rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(content)
    return root


def read_json(path):
    """Load a JSON file."""
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def tree_state(root, skip=("node_modules", ".ng-upgrade")):
    """Relative path -> bytes for every file, ignoring ``skip`` directories."""
    state = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in skip]
        for name in filenames:
            full = os.path.join(dirpath, name)
            with open(full, "rb") as fh:
                state[os.path.relpath(full, root)] = fh.read()
    return state


@pytest.fixture
def angular_project(tmp_path):
    """An Angular 12 application with a few third-party packages."""
    return write_project(
        tmp_path / "app",
        dependencies={
            "@angular/common": "^12.2.0",
            "@angular/core": "^12.2.0",
            "@angular/forms": "^12.2.0",
            "@angular/router": "^12.2.0",
            "@ngrx/store": "^12.0.0",
            "rxjs": "~7.1.0",
            "lodash": "^4.17.21",
        },
        dev_dependencies={
            "@angular/cli": "^12.2.0",
            "@angular/compiler-cli": "^12.2.0",
            "typescript": "~4.3.5",
        },
        files={
            "angular.json": json.dumps({
                "version": 1,
                "projects": {"demo-app": {"projectType": "application"}},
            }),
            "tsconfig.json": json.dumps({"compilerOptions": {"target": "es2017"}}),
            "src/app/app.component.ts": "export class AppComponent {}\n",
            "src/app/app.module.ts": "export class AppModule {}\n",
            "src/app/data.service.ts": "export class DataService {}\n",
            "src/index.html": "<app-root></app-root>\n",
            "node_modules/left-pad/index.js": "module.exports = 1;\n",
            "debug.log": "noise\n",
        },
    )
