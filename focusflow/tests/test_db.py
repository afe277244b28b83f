import unittest

from focusflow.db import InMemoryDbClient, OrderBy, PostgresDbClient
from focusflow.errors import NotFoundError
from focusflow.types import EntityKind, Urgency


class StoreContractTests:
    """Behaviour shared by every DbClient implementation."""

    def make_db(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_db()
        self.project = self.db.create(EntityKind.PROJECT, {"name": "Home"})
        self.goal = self.db.create(
            EntityKind.GOAL, {"project_id": self.project.id, "name": "Garden"}
        )

    def _task(self, name, **values):
        return self.db.create(
            EntityKind.TASK, {"goal_id": self.goal.id, "name": name, **values}
        )

    def test_create_assigns_id_and_timestamps(self):
        self.assertTrue(self.project.id)
        self.assertIsNotNone(self.project.created_at.tzinfo)
        self.assertEqual(self.project.created_at, self.project.updated_at)
        self.assertIsNone(self.project.deleted_at)
        self.assertGreater(self.goal.created_at, self.project.created_at)

    def test_get(self):
        fetched = self.db.get(EntityKind.GOAL, self.goal.id)
        self.assertEqual(fetched.name, "Garden")
        self.assertEqual(fetched.project_id, self.project.id)
        self.assertIsNone(self.db.get(EntityKind.GOAL, "missing"))

    def test_task_defaults(self):
        task = self._task("Weed")
        fetched = self.db.get(EntityKind.TASK, task.id)
        self.assertEqual(fetched.urgency, Urgency.MEDIUM)
        self.assertFalse(fetched.completed)
        self.assertFalse(fetched.todays_focus)
        self.assertIsNone(fetched.completed_at)

    def test_update_bumps_updated_at(self):
        updated = self.db.update(EntityKind.PROJECT, self.project.id, {"name": "House"})
        self.assertEqual(updated.name, "House")
        self.assertEqual(updated.created_at, self.project.created_at)
        self.assertGreater(updated.updated_at, self.project.updated_at)
        self.assertEqual(self.db.get(EntityKind.PROJECT, self.project.id).name, "House")

    def test_update_missing_raises(self):
        with self.assertRaises(NotFoundError):
            self.db.update(EntityKind.PROJECT, "missing", {"name": "x"})

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValueError):
            self.db.create(EntityKind.PROJECT, {"name": "x", "color": "teal"})

    def test_create_requires_live_parent(self):
        with self.assertRaises(NotFoundError):
            self.db.create(EntityKind.GOAL, {"project_id": "missing", "name": "x"})
        self.db.soft_delete_cascade(EntityKind.GOAL, self.goal.id)
        with self.assertRaises(NotFoundError):
            self._task("Weed")

    def test_update_to_deleted_parent_raises(self):
        other = self.db.create(EntityKind.PROJECT, {"name": "Work"})
        self.db.soft_delete_cascade(EntityKind.PROJECT, other.id)
        with self.assertRaises(NotFoundError):
            self.db.update(EntityKind.GOAL, self.goal.id, {"project_id": other.id})
        self.assertEqual(
            self.db.get(EntityKind.GOAL, self.goal.id).project_id, self.project.id
        )

    def test_list_filters_and_orders(self):
        plain = self._task("plain")
        done_focus = self._task("done focus", todays_focus=True, completed=True)
        open_focus = self._task("open focus", todays_focus=True)

        ordered = self.db.list(
            EntityKind.TASK,
            order=(
                OrderBy("todays_focus", descending=True),
                OrderBy("completed"),
                OrderBy("created_at", descending=True),
            ),
        )
        self.assertEqual(
            [t.id for t in ordered], [open_focus.id, done_focus.id, plain.id]
        )

        open_tasks = self.db.list(EntityKind.TASK, {"completed": False})
        self.assertEqual({t.id for t in open_tasks}, {plain.id, open_focus.id})

    def test_urgency_orders_by_rank(self):
        self._task("high", urgency=Urgency.HIGH)
        self._task("low", urgency=Urgency.LOW)
        self._task("medium", urgency="MIDDEN")
        ordered = self.db.list(
            EntityKind.TASK, order=(OrderBy("urgency", descending=True),)
        )
        self.assertEqual([t.name for t in ordered], ["high", "medium", "low"])

    def test_list_rejects_unknown_field(self):
        with self.assertRaises(ValueError):
            self.db.list(EntityKind.TASK, {"colour": "red"})

    def test_soft_delete_project_cascades(self):
        task = self._task("Weed")
        deleted_at = self.db.soft_delete_cascade(EntityKind.PROJECT, self.project.id)

        for kind, entity_id in (
            (EntityKind.PROJECT, self.project.id),
            (EntityKind.GOAL, self.goal.id),
            (EntityKind.TASK, task.id),
        ):
            self.assertIsNone(self.db.get(kind, entity_id))
            hidden = self.db.get(kind, entity_id, include_deleted=True)
            self.assertEqual(hidden.deleted_at, deleted_at)
        self.assertEqual(self.db.list(EntityKind.GOAL), [])
        self.assertEqual(self.db.list(EntityKind.TASK), [])
        self.assertEqual(len(self.db.list(EntityKind.TASK, include_deleted=True)), 1)

    def test_soft_delete_goal_keeps_project(self):
        task = self._task("Weed")
        self.db.soft_delete_cascade(EntityKind.GOAL, self.goal.id)
        self.assertIsNotNone(self.db.get(EntityKind.PROJECT, self.project.id))
        self.assertIsNone(self.db.get(EntityKind.TASK, task.id))

    def test_soft_delete_twice_raises(self):
        self.db.soft_delete_cascade(EntityKind.GOAL, self.goal.id)
        with self.assertRaises(NotFoundError):
            self.db.soft_delete_cascade(EntityKind.GOAL, self.goal.id)

    def test_transaction_rolls_back_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.db.transaction() as tx:
                tx.create(EntityKind.PROJECT, {"name": "Temp"})
                tx.soft_delete_cascade(EntityKind.PROJECT, self.project.id)
                raise RuntimeError("boom")

        self.assertEqual([p.name for p in self.db.list(EntityKind.PROJECT)], ["Home"])
        self.assertIsNotNone(self.db.get(EntityKind.GOAL, self.goal.id))


class InMemoryDbClientTests(StoreContractTests, unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()

    def test_records_are_copies(self):
        fetched = self.db.get(EntityKind.PROJECT, self.project.id)
        fetched.name = "Changed"
        self.assertEqual(self.db.get(EntityKind.PROJECT, self.project.id).name, "Home")

    def test_reset(self):
        self.db.reset()
        self.assertEqual(self.db.list(EntityKind.PROJECT), [])


class PostgresDbClientTests(StoreContractTests, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def make_db(self):
        db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.addCleanup(db.close)
        return db

    def test_ping(self):
        self.assertTrue(self.db.ping())

    def test_requires_url(self):
        with self.assertRaises(ValueError):
            PostgresDbClient("")


if __name__ == "__main__":
    unittest.main()
