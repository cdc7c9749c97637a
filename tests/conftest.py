"""Shared test fixtures."""

import httpx
import pytest

from toolshed import http
from toolshed.argsafe import SafeCommand
from toolshed.catalogue import Catalogue
from toolshed.config import Config
from toolshed.models import Source, Tool
from toolshed.sources.base import BaseSource, SourceMeta
from toolshed.store import Store


class FakeSource(BaseSource):
    """In-memory package manager: ``installed`` maps name to version."""

    def __init__(self, name="cargo", installed=None, versions=None, descriptions=None,
                 available=True):
        self.meta = SourceMeta(name=name, description=f"fake {name}", program=name)
        self.installed = dict(installed or {})
        self.versions = {k: list(v) for k, v in (versions or {}).items()}
        self.descriptions = dict(descriptions or {})
        self.available = available

    def is_available(self):
        return self.available

    def detect_installed_tools(self):
        return [Tool(name=n).with_source(self.meta.name).installed()
                for n in sorted(self.installed)]

    def build_install_cmd(self, name, version=None):
        name, version = self.validate(name, version)
        return SafeCommand(self.meta.name, ("install", name) + ((version,) if version else ()))

    def build_uninstall_cmd(self, name):
        name, _ = self.validate(name)
        return SafeCommand(self.meta.name, ("remove", name))

    def query_installed_version(self, name):
        return self.installed.get(name)

    def list_versions(self, name):
        return self.versions.get(name, [])

    def fetch_description(self, name):
        return self.descriptions.get(name)


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def config(tmp_path):
    return Config(data_dir=str(tmp_path / "data"), config_dir=str(tmp_path / "config"))


@pytest.fixture
def store(config):
    s = Store(config)
    yield s
    s.close()


@pytest.fixture
def catalogue(config, store):
    cat = Catalogue(config, store=store, registry={})
    yield cat
    cat.close()


@pytest.fixture
def seeded(store):
    """A small catalogue: ripgrep (rg), fd-find (fd), bat, git."""
    store.insert_tool(Tool(name="ripgrep", category="search").with_source(Source.CARGO)
                      .with_binary("rg").installed())
    store.insert_tool(Tool(name="fd-find", category="files").with_source(Source.CARGO)
                      .with_binary("fd").installed())
    store.insert_tool(Tool(name="bat", description="cat with wings", category="files")
                      .with_source(Source.APT).installed())
    store.insert_tool(Tool(name="git", category="git").with_source(Source.APT).installed())
    return store


@pytest.fixture
def http_routes():
    """Route table for the shared HTTP client: {url: json body}; anything else 404s."""
    routes = {}

    def handler(request):
        body = routes.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)

    http.set_client(httpx.Client(transport=httpx.MockTransport(handler)))
    yield routes
    http.set_client(None)
