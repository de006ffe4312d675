"""Shared fixtures: a small in-memory desktop and a fast config."""

import logging

import pytest

from ax_config import ShellConfig
from ax_tree import ElementTree
from memory_provider import InMemoryProvider, MemoryApplication, MemoryNode as N


def main_window():
    return N("AXWindow", "Main", children=[
        N("AXButton", "OK", role_description="button"),
        N("AXButton", "Cancel", role_description="button"),
        N("AXTextField", "Search", role_description="text field"),
    ])


def settings_window():
    # pre-order: window, group, checkBox, button Apply, button Close
    return N("AXWindow", "Settings", subrole="AXDialog", children=[
        N("AXGroup", "General", children=[
            N("AXCheckBox", "Dark Mode"),
            N("AXButton", "Apply"),
        ]),
        N("AXButton", "Close"),
    ])


def make_provider(**kwargs):
    notes = MemoryApplication("Notes", 501, windows=[main_window(), settings_window()],
                              bundle_id="com.apple.Notes")
    calc = MemoryApplication("Calculator", 502, windows=[N("AXWindow", "Calculator")])
    return InMemoryProvider([notes, calc], focused_pid=501, **kwargs)


@pytest.fixture
def provider():
    return make_provider()


@pytest.fixture
def config():
    return ShellConfig(call_timeout=0.5, children_timeout=0.3, find_timeout=2.0, path_timeout=2.0,
                       action_timeout=0.5, retry_attempts=2, retry_delay=0.0)


@pytest.fixture
def logger():
    return logging.getLogger("ax_shell_tests")


@pytest.fixture
def notes(provider):
    return provider.applications[0]


@pytest.fixture
def main_tree(provider, notes, config, logger):
    tree = ElementTree(provider, config, logger)
    tree.create_root(notes.windows[0])
    return tree


@pytest.fixture
def settings_tree(provider, notes, config, logger):
    tree = ElementTree(provider, config, logger)
    tree.create_root(notes.windows[1])
    return tree
