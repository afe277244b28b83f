import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from focusflow import crud
from focusflow.db import InMemoryDbClient
from focusflow.schemas import SyncRequest
from focusflow.sync import reconcile
from focusflow.types import EntityKind, Urgency


def _task(name="T1", **values):
    task = {"name": name, "completed": False, "urgency": "HOOG", "todaysFocus": True}
    task.update(values)
    return task


def _request(projects, **extra):
    return SyncRequest.model_validate({"projects": projects, **extra})


def _counts(counts):
    return (counts.projects, counts.goals, counts.tasks)


def _shape(server_state):
    """Ids and client-controlled fields of the returned hierarchy."""
    return [
        (
            p.project.id,
            p.project.name,
            [
                (
                    g.goal.id,
                    g.goal.name,
                    [
                        (t.id, t.name, t.completed, t.urgency, t.todays_focus, t.completed_at)
                        for t in g.tasks
                    ],
                )
                for g in p.goals
            ],
        )
        for p in server_state
    ]


class ReconcileTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()

    def _seed(self):
        outcome = reconcile(
            self.db,
            _request([{"name": "P1", "goals": [{"name": "G1", "tasks": [_task()]}]}]),
        )
        project = outcome.server_state[0]
        goal = project.goals[0]
        return project.project, goal.goal, goal.tasks[0]

    def _snapshot(self, project, goal, task, **task_values):
        return [
            {
                "id": project.id,
                "name": project.name,
                "goals": [
                    {
                        "id": goal.id,
                        "name": goal.name,
                        "tasks": [_task(task.name, id=task.id, **task_values)],
                    }
                ],
            }
        ]

    def test_new_project_creates_subtree(self):
        outcome = reconcile(
            self.db,
            _request([{"name": "P1", "goals": [{"name": "G1", "tasks": [_task()]}]}]),
        )

        self.assertEqual(_counts(outcome.sync_results.created), (1, 1, 1))
        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 0))
        self.assertEqual(len(outcome.server_state), 1)
        project = outcome.server_state[0]
        self.assertEqual(project.project.name, "P1")
        self.assertEqual(len(project.goals), 1)
        self.assertEqual(len(project.goals[0].tasks), 1)
        task = project.goals[0].tasks[0]
        self.assertTrue(task.id)
        self.assertEqual(task.name, "T1")
        self.assertFalse(task.completed)
        self.assertEqual(task.urgency, Urgency.HIGH)
        self.assertTrue(task.todays_focus)
        self.assertIsNone(task.completed_at)
        self.assertIsNotNone(task.created_at)
        self.assertIsNotNone(task.updated_at)
        self.assertIsNotNone(outcome.synced_at)

    def test_client_ids_under_new_project_are_ignored(self):
        outcome = reconcile(
            self.db,
            _request(
                [
                    {
                        "name": "P1",
                        "goals": [
                            {"id": "client-goal", "name": "G1", "tasks": [_task(id="client-task")]},
                            {"name": "G2", "tasks": [_task("T2"), _task("T3")]},
                        ],
                    }
                ]
            ),
        )

        self.assertEqual(_counts(outcome.sync_results.created), (1, 2, 3))
        goals = outcome.server_state[0].goals
        self.assertNotIn("client-goal", [g.goal.id for g in goals])
        self.assertNotEqual(goals[0].tasks[0].id, "client-task")

    def test_resync_completion_sets_completed_at(self):
        project, goal, task = self._seed()

        outcome = reconcile(
            self.db, _request(self._snapshot(project, goal, task, completed=True))
        )

        self.assertEqual(_counts(outcome.sync_results.created), (0, 0, 0))
        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 1))
        returned = outcome.server_state[0].goals[0].tasks[0]
        self.assertEqual(returned.id, task.id)
        self.assertTrue(returned.completed)
        self.assertIsNotNone(returned.completed_at)

    def test_client_completed_at_is_kept(self):
        project, goal, task = self._seed()
        stamp = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        outcome = reconcile(
            self.db,
            _request(
                self._snapshot(
                    project, goal, task, completed=True, completedAt=stamp.isoformat()
                )
            ),
        )

        self.assertEqual(outcome.server_state[0].goals[0].tasks[0].completed_at, stamp)

    def test_incomplete_task_clears_completed_at(self):
        project, goal, task = self._seed()
        outcome = reconcile(
            self.db,
            _request(
                self._snapshot(
                    project, goal, task, completed=False, completedAt="2026-01-02T03:04:05Z"
                )
            ),
        )
        self.assertIsNone(outcome.server_state[0].goals[0].tasks[0].completed_at)

    def test_unknown_project_id_is_dropped(self):
        outcome = reconcile(
            self.db,
            _request([{"id": "nope", "name": "P1", "goals": [{"name": "G1", "tasks": [_task()]}]}]),
        )

        self.assertEqual(_counts(outcome.sync_results.created), (0, 0, 0))
        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 0))
        self.assertEqual(outcome.server_state, [])

    def test_deleted_project_id_is_dropped(self):
        project, goal, task = self._seed()
        crud.delete_project(self.db, project.id)

        outcome = reconcile(self.db, _request(self._snapshot(project, goal, task)))

        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 0))
        self.assertEqual(outcome.server_state, [])
        self.assertIsNone(self.db.get(EntityKind.TASK, task.id))

    def test_unknown_goal_id_is_skipped(self):
        project, goal, task = self._seed()
        before = _shape(reconcile(self.db, _request([])).server_state)

        outcome = reconcile(
            self.db,
            _request(
                [
                    {
                        "id": project.id,
                        "name": project.name,
                        "goals": [
                            {"id": "missing", "name": "Ghost", "tasks": [_task("new"), _task(id=task.id)]}
                        ],
                    }
                ]
            ),
        )

        self.assertEqual(_counts(outcome.sync_results.created), (0, 0, 0))
        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 0))
        self.assertEqual(_shape(outcome.server_state), before)

    def test_goal_of_other_project_is_skipped(self):
        project, goal, task = self._seed()
        other = crud.create_project(self.db, {"name": "P2"}).project

        outcome = reconcile(
            self.db,
            _request(
                [{"id": other.id, "name": "P2", "goals": [{"id": goal.id, "name": "Renamed", "tasks": []}]}]
            ),
        )

        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 0))
        self.assertEqual(self.db.get(EntityKind.GOAL, goal.id).name, "G1")

    def test_unknown_task_id_is_skipped(self):
        project, goal, task = self._seed()
        snapshot = self._snapshot(project, goal, task)
        snapshot[0]["goals"][0]["tasks"].append(_task("ghost", id="missing"))

        outcome = reconcile(self.db, _request(snapshot))

        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 1))
        self.assertEqual(_counts(outcome.sync_results.created), (0, 0, 0))
        self.assertEqual(len(outcome.server_state[0].goals[0].tasks), 1)

    def test_new_goal_and_task_under_existing_parents(self):
        project, goal, task = self._seed()
        snapshot = self._snapshot(project, goal, task)
        snapshot[0]["goals"][0]["tasks"].append(_task("T2"))
        snapshot[0]["goals"].append({"id": "", "name": "G2", "tasks": [_task("T3", id="x")]})

        outcome = reconcile(self.db, _request(snapshot))

        self.assertEqual(_counts(outcome.sync_results.created), (0, 1, 2))
        goals = outcome.server_state[0].goals
        self.assertEqual([g.goal.name for g in goals], ["G1", "G2"])
        self.assertEqual(goals[0].total_count, 2)
        self.assertEqual(goals[1].tasks[0].name, "T3")

    def test_name_changes_update_project_and_goal(self):
        project, goal, task = self._seed()
        snapshot = self._snapshot(project, goal, task)
        snapshot[0]["name"] = "P1 renamed"
        snapshot[0]["goals"][0]["name"] = "G1 renamed"

        outcome = reconcile(self.db, _request(snapshot))

        self.assertEqual(_counts(outcome.sync_results.updated), (1, 1, 1))
        self.assertEqual(outcome.server_state[0].project.name, "P1 renamed")
        self.assertEqual(outcome.server_state[0].goals[0].goal.name, "G1 renamed")

    def test_identical_snapshot_is_idempotent(self):
        project, goal, task = self._seed()
        snapshot = self._snapshot(project, goal, task, completed=True)

        first = reconcile(self.db, _request(snapshot))
        second = reconcile(self.db, _request(snapshot))

        self.assertEqual(_shape(first.server_state), _shape(second.server_state))
        self.assertEqual(_counts(second.sync_results.created), (0, 0, 0))
        self.assertEqual(_counts(second.sync_results.updated), (0, 0, 1))
        self.assertEqual(
            _counts(first.sync_results.updated), _counts(second.sync_results.updated)
        )

    def test_omitted_entities_are_kept(self):
        project, goal, task = self._seed()

        outcome = reconcile(
            self.db, _request([{"id": project.id, "name": project.name, "goals": []}])
        )

        self.assertEqual(outcome.server_state[0].goals[0].goal.id, goal.id)
        self.assertEqual(outcome.server_state[0].goals[0].tasks[0].id, task.id)

    def test_failure_rolls_back_whole_merge(self):
        project, goal, task = self._seed()
        snapshot = [{"name": "Fresh", "goals": [{"name": "G", "tasks": [_task()]}]}]
        snapshot += self._snapshot(project, goal, task, completed=True)

        with patch.object(self.db, "update", side_effect=RuntimeError("disk full")):
            with self.assertRaises(RuntimeError):
                reconcile(self.db, _request(snapshot))

        self.assertEqual(
            [p.name for p in self.db.list(EntityKind.PROJECT)], ["P1"]
        )
        self.assertEqual(len(self.db.list(EntityKind.GOAL)), 1)
        self.assertFalse(self.db.get(EntityKind.TASK, task.id).completed)

    def test_conflicts_reported_after_watermark(self):
        project, goal, task = self._seed()
        earlier = task.updated_at - timedelta(seconds=1)

        outcome = reconcile(
            self.db,
            _request(
                self._snapshot(project, goal, task), lastSyncedAt=earlier.isoformat()
            ),
        )

        conflicts = outcome.sync_results.conflicts
        self.assertEqual([(c.entity, c.id) for c in conflicts], [("task", task.id)])
        self.assertEqual(conflicts[0].server_updated_at, task.updated_at)
        # Last write still wins.
        self.assertEqual(_counts(outcome.sync_results.updated), (0, 0, 1))

    def test_no_conflicts_without_server_changes(self):
        first = reconcile(
            self.db,
            _request([{"name": "P1", "goals": [{"name": "G1", "tasks": [_task()]}]}]),
        )
        project = first.server_state[0]
        goal = project.goals[0]

        outcome = reconcile(
            self.db,
            _request(
                self._snapshot(project.project, goal.goal, goal.tasks[0]),
                lastSyncedAt=first.synced_at.isoformat(),
            ),
        )
        self.assertEqual(outcome.sync_results.conflicts, [])

        without_watermark = reconcile(
            self.db, _request(self._snapshot(project.project, goal.goal, goal.tasks[0]))
        )
        self.assertEqual(without_watermark.sync_results.conflicts, [])


if __name__ == "__main__":
    unittest.main()
