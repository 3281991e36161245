"""
Catalog Manager - the admin console's view of the test catalog.

Every mutation builds a whole new snapshot, commits it through the
write-through persister and broadcasts catalogUpdated with the full
snapshot. Background reloads broadcast catalogReloaded, and only when the
content actually changed.
"""

import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .bus import ChangeBus
from .errors import TestNotFoundError
from .events import ChangeEvent, EventKind
from .loader import CascadingLoader, LoadResult
from .models import CatalogSnapshot, Collection, TestDefinition, utc_now
from .persister import CommitReceipt, WriteThroughPersister
from .sources.base import SourceAdapter
from .validation import ValidationReport, validate_catalog


def new_test_id() -> str:
    return f"test-{uuid.uuid4().hex[:12]}"


class CatalogManager:

    def __init__(
        self,
        loader: CascadingLoader,
        sources: Sequence[SourceAdapter],
        persister: WriteThroughPersister,
        bus: ChangeBus,
        logger: Any,
        origin: str = "",
    ):
        if persister.collection is not Collection.CATALOG:
            raise ValueError("CatalogManager needs a catalog persister")
        self._loader = loader
        self._sources = list(sources)
        self._persister = persister
        self._bus = bus
        self._logger = logger
        self._origin = origin
        self._snapshot = CatalogSnapshot()
        self.last_load: Optional[LoadResult] = None

    # -------------------------------------------------
    # Load
    # -------------------------------------------------

    async def load(self) -> LoadResult:
        result = await self._loader.load(self._sources, Collection.CATALOG)
        self.last_load = result
        self._snapshot = result.snapshot
        return result

    async def reload(self) -> bool:
        """
        Re-run the cascade in the background.

        Returns:
            True when new content was adopted and catalogReloaded broadcast
        """
        result = await self._loader.load(self._sources, Collection.CATALOG)
        self.last_load = result
        if result.empty or result.snapshot.content_equals(self._snapshot):
            return False

        self._snapshot = result.snapshot
        self._logger.info(
            f"Catalog reloaded from {result.served_by.value} ({len(self._snapshot.test_definitions)} tests)",
            emoji="🔄",
        )
        await self._bus.publish(ChangeEvent(
            kind=EventKind.CATALOG_RELOADED,
            collection=Collection.CATALOG,
            payload=self._snapshot,
            origin=self._origin,
        ))
        return True

    # -------------------------------------------------
    # Read
    # -------------------------------------------------

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    @property
    def tests(self) -> List[TestDefinition]:
        return list(self._snapshot.test_definitions)

    def get(self, test_id: str) -> TestDefinition:
        for test in self._snapshot.test_definitions:
            if test.id == test_id:
                return test
        raise TestNotFoundError(test_id)

    def search(self, query: str, lang: Optional[str] = None) -> List[TestDefinition]:
        """
        Case-insensitive substring search over names, descriptions, test
        type/category and color results.

        Args:
            query: text to look for; blank returns every test
            lang: "en" or "ar" to search one language only; None searches both
        """
        needle = (query or "").strip().lower()
        if not needle:
            return self.tests

        langs = [lang] if lang in ("en", "ar") else ["en", "ar"]

        def haystack(test: TestDefinition) -> List[str]:
            fields = [test.test_type or "", test.category or ""]
            for code in langs:
                fields.append(test.name.get(code))
                fields.append(test.description.get(code))
                for result in test.color_results:
                    fields.append(result.result.get(code))
                    if result.substance is not None:
                        fields.append(result.substance.get(code))
            return fields

        return [
            test for test in self._snapshot.test_definitions
            if any(needle in value.lower() for value in haystack(test) if value)
        ]

    def by_category(self, category: str) -> List[TestDefinition]:
        wanted = (category or "").lower()
        return [t for t in self._snapshot.test_definitions if (t.category or "").lower() == wanted]

    def statistics(self) -> Dict[str, Any]:
        tests = self._snapshot.test_definitions
        substances = set()
        colors = set()
        total_results = 0

        for test in tests:
            total_results += len(test.color_results)
            for result in test.color_results:
                colors.add(result.color_hex.lower())
                if result.substance is not None and result.substance.en:
                    substances.add(result.substance.en.lower())

        return {
            "total_tests": len(tests),
            "total_results": total_results,
            "unique_substances": len(substances),
            "unique_colors": len(colors),
            "tests_by_type": dict(Counter(t.test_type or "unknown" for t in tests)),
        }

    # -------------------------------------------------
    # Write
    # -------------------------------------------------

    async def save(self, test: Union[TestDefinition, Dict[str, Any]]) -> Tuple[TestDefinition, CommitReceipt]:
        """
        Create (no id, or unknown id) or replace (known id) one test.

        Raises:
            pydantic.ValidationError: test given as a dict with bad fields
        """
        if not isinstance(test, TestDefinition):
            test = TestDefinition.model_validate(test)

        now = utc_now()
        tests = self.tests

        index = next((i for i, t in enumerate(tests) if test.id and t.id == test.id), None)
        if index is None:
            saved = test.model_copy(update={
                "id": test.id or new_test_id(),
                "created": test.created or now,
                "updated": now,
            })
            tests.append(saved)
        else:
            saved = test.model_copy(update={
                "created": tests[index].created or test.created or now,
                "updated": now,
            })
            tests[index] = saved

        receipt = await self._commit(tests)
        if receipt.ok:
            verb = "Created" if index is None else "Updated"
            self._logger.info(f"{verb} test {saved.id} ({saved.name.en})", emoji="💾")
        return saved, receipt

    async def delete(self, test_id: str) -> CommitReceipt:
        """
        Raises:
            TestNotFoundError: no test with this id
        """
        self.get(test_id)
        tests = [t for t in self._snapshot.test_definitions if t.id != test_id]
        receipt = await self._commit(tests)
        if receipt.ok:
            self._logger.info(f"Deleted test {test_id}", emoji="🗑️")
        return receipt

    async def replace_all(self, payload: Any) -> Tuple[ValidationReport, Optional[CommitReceipt]]:
        """
        Import a whole catalog. Nothing is committed unless it validates.

        Returns:
            (report, receipt); receipt is None when validation failed
        """
        report = validate_catalog(payload)
        if not report.is_valid:
            self._logger.warn(f"Catalog import rejected: {len(report.errors)} error(s)")
            return report, None

        now = utc_now()
        tests = [
            t.model_copy(update={
                "id": t.id or new_test_id(),
                "created": t.created or now,
                "updated": t.updated or now,
            })
            for t in report.tests
        ]
        receipt = await self._commit(tests)
        if receipt.ok:
            self._logger.ok(
                f"Imported {len(tests)} tests ({len(report.warnings)} warning(s))",
                emoji="📥",
            )
        return report, receipt

    async def _commit(self, tests: List[TestDefinition]) -> CommitReceipt:
        candidate = CatalogSnapshot(test_definitions=tests, last_updated=utc_now())
        receipt = await self._persister.commit(candidate)
        if not receipt.ok:
            return receipt

        self._snapshot = candidate
        await self._bus.publish(ChangeEvent(
            kind=EventKind.CATALOG_UPDATED,
            collection=Collection.CATALOG,
            payload=candidate,
            origin=self._origin,
        ))
        return receipt
