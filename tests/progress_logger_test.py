import json
import os
import tempfile
import unittest

from figma_atomic.common.utils import (
    ProgressLogger,
    PROGRESS_STATUS_VALUES,
)


class ProgressLoggerTests(unittest.TestCase):
    def test_appends_without_clobbering_existing_events(self):
        with tempfile.TemporaryDirectory() as tmp:
            progress_path = os.path.join(tmp, "events.jsonl")
            state_path = os.path.join(tmp, "state.json")
            log_path = os.path.join(tmp, "run.log")

            baseline = {"existing": True}
            with open(progress_path, "w", encoding="utf-8") as f:
                f.write(json.dumps(baseline) + "\n")

            logger = ProgressLogger(state_path=state_path, progress_path=progress_path, run_id="t-run",
                                    log_path=log_path)
            logger.log("generate_artifact", "running", current=1, total=2, message="button: Button 1",
                       artifact="/tmp/Button1.tsx", module_id="generate_component_v1")

            with open(progress_path, "r", encoding="utf-8") as f:
                lines = [json.loads(line) for line in f if line.strip()]

            self.assertEqual(lines[0], baseline)
            self.assertEqual(lines[1]["stage"], "generate_artifact")
            self.assertEqual(lines[1]["status"], "running")
            self.assertAlmostEqual(lines[1]["percent"], 50.0)
            self.assertEqual(len(lines), 2)

            with open(state_path, "r", encoding="utf-8") as f:
                state = json.load(f)
            stage_state = state["stages"]["generate_artifact"]
            self.assertEqual(state["run_id"], "t-run")
            self.assertEqual(stage_state["status"], "running")
            self.assertEqual(stage_state["progress"]["current"], 1)
            self.assertEqual(stage_state["progress"]["total"], 2)

            with open(log_path, "r", encoding="utf-8") as f:
                log_line = f.read().strip()
            self.assertIn("[generate_artifact] RUNNING (1/2) button: Button 1 -> /tmp/Button1.tsx", log_line)

    def test_warning_counts_without_overriding_done(self):
        with tempfile.TemporaryDirectory() as tmp:
            state_path = os.path.join(tmp, "state.json")
            logger = ProgressLogger(state_path=state_path, run_id="t-run")
            logger.log("discover_elements", "done", current=2, total=3)
            event = logger.warn("discover_elements", "dropped id 9:9", module_id="discover_elements_v1", record=3)
            logger.warn("discover_elements", "dropped id 9:8")

            self.assertEqual(event["status"], "warning")
            self.assertEqual(event["extra"], {"record": 3})
            with open(state_path, "r", encoding="utf-8") as f:
                stage_state = json.load(f)["stages"]["discover_elements"]
            self.assertEqual(stage_state["status"], "done")
            self.assertEqual(stage_state["warnings"], 2)
            self.assertEqual(stage_state["module_id"], "discover_elements_v1")

    def test_logger_without_sinks_returns_events(self):
        event = ProgressLogger().log("summarize", "queued")
        self.assertEqual(event["stage"], "summarize")
        self.assertIsNone(event["percent"])

    def test_rejects_invalid_status(self):
        with tempfile.TemporaryDirectory() as tmp:
            progress_path = os.path.join(tmp, "events.jsonl")
            state_path = os.path.join(tmp, "state.json")
            logger = ProgressLogger(state_path=state_path, progress_path=progress_path, run_id="t-run")
            with self.assertRaises(ValueError):
                logger.log("classify_sections", "bogus", current=1, total=1)
            self.assertIn("warning", PROGRESS_STATUS_VALUES)
            self.assertFalse(os.path.exists(progress_path))


if __name__ == "__main__":
    unittest.main()
