import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


def _imports(package_dir: Path):
    for py_file in package_dir.rglob("*.py"):
        source = py_file.read_text(encoding="utf-8")
        tree = ast.parse(source, filename=str(py_file))
        rel_path = py_file.relative_to(REPO_ROOT)

        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    yield rel_path, node.lineno, alias.name
            elif isinstance(node, ast.ImportFrom):
                yield rel_path, node.lineno, node.module or ""


def _violations(package: str, forbidden):
    found = []
    for rel_path, lineno, name in _imports(REPO_ROOT / "convwatch" / package):
        for prefix in forbidden:
            if name == prefix or name.startswith(prefix + "."):
                found.append(f"{rel_path}:{lineno} imports {name}")
    return found


def test_pipeline_layer_does_not_import_http_transport():
    """Pipeline layer talks to observers through the broker, never the HTTP server."""
    violations = _violations("pipeline", ["convwatch.infrastructure.web_server", "http", "socketserver"])
    assert not violations, "Pipeline layer must not import the HTTP transport:\n" + "\n".join(violations)


def test_domain_layer_is_self_contained():
    violations = _violations("domain", ["convwatch.pipeline", "convwatch.infrastructure", "convwatch.config"])
    assert not violations, "Domain layer must not import outer layers:\n" + "\n".join(violations)
