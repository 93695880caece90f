"""Tests for capability handles and the registry."""

from __future__ import annotations

import unittest

from visionary.capabilities import (
    DETECT_OBJECTS,
    READ_TEXT,
    CapabilityHandle,
    CapabilityRegistry,
    CapabilityState,
    build_default_registry,
)
from visionary.errors import CapabilityUnavailableError
from visionary.schemas import SessionConfig


class TestCapabilityHandle(unittest.TestCase):
    def test_lazy_init_once(self):
        built = []

        def factory():
            built.append(1)
            return object()

        handle = CapabilityHandle("thing", factory)
        self.assertEqual(handle.state, CapabilityState.UNINITIALIZED)
        first = handle.get()
        second = handle.get()
        self.assertIs(first, second)
        self.assertEqual(len(built), 1)
        self.assertEqual(handle.state, CapabilityState.READY)

    def test_failed_is_terminal(self):
        calls = []

        def factory():
            calls.append(1)
            raise RuntimeError("no GPU")

        handle = CapabilityHandle("detector", factory)
        with self.assertRaises(CapabilityUnavailableError) as ctx:
            handle.get()
        self.assertIn("no GPU", str(ctx.exception))
        self.assertEqual(handle.state, CapabilityState.FAILED)
        self.assertEqual(handle.error, "no GPU")
        with self.assertRaises(CapabilityUnavailableError):
            handle.get()
        self.assertEqual(len(calls), 1)

    def test_ready_handle(self):
        inst = object()
        handle = CapabilityHandle.ready("x", inst)
        self.assertEqual(handle.state, CapabilityState.READY)
        self.assertIs(handle.get(), inst)


class TestCapabilityRegistry(unittest.TestCase):
    def test_register_unknown_tool(self):
        with self.assertRaises(ValueError):
            CapabilityRegistry().register("segment", CapabilityHandle.ready("s", object()))

    def test_warm_up_reports_status(self):
        reg = CapabilityRegistry()
        reg.register(DETECT_OBJECTS, CapabilityHandle("ok", lambda: object()))

        def broken():
            raise OSError("tesseract missing")

        reg.register(READ_TEXT, CapabilityHandle("bad", broken))
        self.assertEqual(reg.status(), {DETECT_OBJECTS: "uninitialized", READ_TEXT: "uninitialized"})
        self.assertEqual(reg.warm_up(), {DETECT_OBJECTS: "ready", READ_TEXT: "failed"})
        self.assertIn(DETECT_OBJECTS, reg)
        self.assertEqual(len(reg), 2)

    def test_default_registry_is_lazy(self):
        reg = build_default_registry(SessionConfig(detector="vlm", ocr="vlm"))
        self.assertEqual(reg.names(), [DETECT_OBJECTS, READ_TEXT])
        self.assertEqual(set(reg.status().values()), {"uninitialized"})


if __name__ == "__main__":
    unittest.main()
