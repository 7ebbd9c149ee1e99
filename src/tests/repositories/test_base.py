"""Test the synchronous generic repository."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from clean_template.core.context import DataContext
from clean_template.repositories.base import BaseRepository
from clean_template.repositories.exceptions import (
    ConstraintViolationError,
    DataAccessError,
    MultipleResultsError,
)
from clean_template.repositories.interfaces import OrderBy, PaginationParams
from clean_template.repositories.unit_of_work import UnitOfWork
from factories import Author, Book, Review, Ticket, create_book


def _stored_books(session_factory: sessionmaker[Session]) -> int:
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(Book))


class TestReads:
    """Test get_by_id(), get_all() and count()."""

    def test_get_by_id_returns_entity(self, uow: UnitOfWork, ranked: None) -> None:
        book = uow.repository(Book).get_by_id(4)

        assert book is not None
        assert book.title == "book-4"

    def test_get_by_id_missing_returns_none(self, uow: UnitOfWork, ranked: None) -> None:
        assert uow.repository(Book).get_by_id(999) is None

    def test_get_all_returns_every_entity(self, uow: UnitOfWork, ranked: None) -> None:
        books = uow.repository(Book).get_all()

        assert sorted(book.id for book in books) == list(range(1, 11))

    def test_get_all_empty_collection(self, uow: UnitOfWork) -> None:
        assert uow.repository(Book).get_all() == []

    def test_count_all(self, uow: UnitOfWork, ranked: None) -> None:
        assert uow.repository(Book).count() == 10

    def test_count_matches_find_all_length(self, uow: UnitOfWork, ranked: None) -> None:
        repo = uow.repository(Book)
        criteria = Book.rank <= 4

        assert repo.count(criteria) == len(repo.find_all(criteria)) == 4


class TestFind:
    """Test find() single-result semantics."""

    def test_find_single_match(self, uow: UnitOfWork, ranked: None) -> None:
        book = uow.repository(Book).find(Book.rank == 1)

        assert book is not None
        assert book.id == 10

    def test_find_no_match_returns_none(self, uow: UnitOfWork, ranked: None) -> None:
        assert uow.repository(Book).find(Book.rank == 100) is None

    def test_find_multiple_matches_raises(self, uow: UnitOfWork, ranked: None) -> None:
        with pytest.raises(MultipleResultsError):
            uow.repository(Book).find(Book.rank > 5)

    def test_find_with_includes_eager_loads_relationships(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session]
    ) -> None:
        with session_factory() as session:
            author = Author(name="Ursula K. Le Guin")
            author.books = [Book(title="The Dispossessed", rank=1, reviews=[Review(body="Ambiguous utopia")])]
            session.add(author)
            session.commit()

        found = uow.repository(Author).find(Author.name == "Ursula K. Le Guin", includes=["books.reviews"])

        assert found is not None
        assert "books" not in inspect(found).unloaded
        assert "reviews" not in inspect(found.books[0]).unloaded
        assert found.books[0].reviews[0].body == "Ambiguous utopia"

    def test_find_without_includes_leaves_relationships_lazy(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session]
    ) -> None:
        with session_factory() as session:
            session.add(Author(name="Lazy Author"))
            session.commit()

        found = uow.repository(Author).find(Author.name == "Lazy Author")

        assert "books" in inspect(found).unloaded

    def test_find_unknown_include_raises_value_error(self, uow: UnitOfWork) -> None:
        with pytest.raises(ValueError, match="no relationship 'chapters'"):
            uow.repository(Book).find(Book.id == 1, includes=["chapters"])


class TestFindAll:
    """Test find_all() filtering, ordering and paging."""

    def test_find_all_filters(self, uow: UnitOfWork, ranked: None) -> None:
        books = uow.repository(Book).find_all(Book.rank > 8)

        assert sorted(book.id for book in books) == [1, 2]

    def test_find_all_with_includes(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session]
    ) -> None:
        with session_factory() as session:
            session.add(Author(name="Iain M. Banks", books=[Book(title="Excession", rank=2)]))
            session.add(Author(name="Ann Leckie", books=[Book(title="Ancillary Justice", rank=3)]))
            session.commit()

        authors = uow.repository(Author).find_all(Author.id > 0, includes=["books"])

        assert len(authors) == 2
        assert all("books" not in inspect(author).unloaded for author in authors)

    def test_sort_applies_before_skip_and_take(self, uow: UnitOfWork, ranked: None) -> None:
        books = uow.repository(Book).find_all(
            Book.id > 0, skip=2, take=3, order_by=Book.rank, direction=OrderBy.ASCENDING
        )

        assert [book.id for book in books] == [8, 7, 6]

    def test_descending_order_by_attribute_name(self, uow: UnitOfWork, ranked: None) -> None:
        books = uow.repository(Book).find_all(
            Book.id > 0, take=3, order_by="rank", direction=OrderBy.DESCENDING
        )

        assert [book.id for book in books] == [1, 2, 3]

    def test_paging_without_order_by_uses_primary_key(self, uow: UnitOfWork, ranked: None) -> None:
        books = uow.repository(Book).find_all(Book.id > 0, skip=2, take=3)

        assert [book.id for book in books] == [3, 4, 5]

    def test_take_zero_returns_empty_list(self, uow: UnitOfWork, ranked: None) -> None:
        assert uow.repository(Book).find_all(Book.id > 0, skip=0, take=0) == []

    def test_skip_beyond_end_returns_empty_list(self, uow: UnitOfWork, ranked: None) -> None:
        assert uow.repository(Book).find_all(Book.id > 0, skip=50, take=5) == []

    @pytest.mark.parametrize("skip,take", [(-1, 3), (0, -1)])
    def test_negative_window_raises_value_error(
        self, uow: UnitOfWork, skip: int, take: int
    ) -> None:
        with pytest.raises(ValueError, match="must be non-negative"):
            uow.repository(Book).find_all(Book.id > 0, skip=skip, take=take)

    def test_unknown_order_attribute_raises_value_error(self, uow: UnitOfWork) -> None:
        with pytest.raises(ValueError, match="no attribute 'popularity'"):
            uow.repository(Book).find_all(Book.id > 0, order_by="popularity")


class TestFindPage:
    """Test find_page() results and metadata."""

    def test_middle_page(self, uow: UnitOfWork, ranked: None) -> None:
        page = uow.repository(Book).find_page(
            Book.id > 0, PaginationParams(offset=3, limit=3), order_by=Book.id
        )

        assert [book.id for book in page.items] == [4, 5, 6]
        assert page.total == 10
        assert page.has_next is True
        assert page.has_prev is True

    def test_default_pagination_returns_everything(self, uow: UnitOfWork, ranked: None) -> None:
        page = uow.repository(Book).find_page()

        assert len(page.items) == 10
        assert page.limit == 50
        assert page.has_next is False
        assert page.has_prev is False

    def test_total_respects_criteria(self, uow: UnitOfWork, ranked: None) -> None:
        page = uow.repository(Book).find_page(Book.rank > 7, PaginationParams(limit=2), order_by=Book.rank)

        assert page.total == 3
        assert [book.rank for book in page.items] == [8, 9]


class TestStagedWrites:
    """Test add/update/delete staging semantics."""

    def test_add_returns_same_entity_without_id(self, uow: UnitOfWork) -> None:
        book = create_book(title="Hyperion")

        staged = uow.repository(Book).add(book)

        assert staged is book
        assert staged.id is None

    def test_add_is_invisible_until_commit(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session]
    ) -> None:
        repo = uow.repository(Book)
        repo.add(create_book(title="Hyperion"))

        assert _stored_books(session_factory) == 0
        assert repo.count() == 0

        uow.commit()

        assert _stored_books(session_factory) == 1

    def test_add_assigns_id_on_commit(self, uow: UnitOfWork) -> None:
        book = uow.repository(Book).add(create_book(title="Hyperion"))

        uow.commit()

        assert book.id is not None

    def test_add_range_returns_list_of_entities(self, uow: UnitOfWork) -> None:
        books = (create_book(title=f"vol-{i}") for i in range(3))

        staged = uow.repository(Book).add_range(books)

        assert [book.title for book in staged] == ["vol-0", "vol-1", "vol-2"]
        assert uow.commit() == 3

    def test_update_tracked_entity_returns_same_instance(self, uow: UnitOfWork, ranked: None) -> None:
        repo = uow.repository(Book)
        book = repo.get_by_id(1)
        book.title = "renamed"

        assert repo.update(book) is book
        assert uow.commit() == 1

    def test_update_detached_entity_replaces_stored_record(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session], ranked: None
    ) -> None:
        with session_factory() as session:
            detached = session.get(Book, 2)
        detached.title = "Second, revised"
        detached.rank = 42

        tracked = uow.repository(Book).update(detached)
        assert _stored_books(session_factory) == 10

        uow.commit()

        assert tracked.title == "Second, revised"
        with session_factory() as session:
            stored = session.get(Book, 2)
            assert (stored.title, stored.rank) == ("Second, revised", 42)

    def test_delete_is_staged_until_commit(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session], ranked: None
    ) -> None:
        repo = uow.repository(Book)
        repo.delete(repo.get_by_id(1))

        assert _stored_books(session_factory) == 10

        uow.commit()

        assert _stored_books(session_factory) == 9

    def test_delete_detached_entity(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session], ranked: None
    ) -> None:
        with session_factory() as session:
            detached = session.get(Book, 3)

        uow.repository(Book).delete(detached)
        uow.commit()

        with session_factory() as session:
            assert session.get(Book, 3) is None

    def test_delete_range(self, uow: UnitOfWork, session_factory: sessionmaker[Session], ranked: None) -> None:
        repo = uow.repository(Book)
        repo.delete_range(repo.find_all(Book.rank <= 3))

        assert uow.commit() == 3
        assert _stored_books(session_factory) == 7

    def test_update_writes_whole_record_over_newer_row(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session], ranked: None
    ) -> None:
        repo = uow.repository(Book)
        mine = repo.get_by_id(1)
        with session_factory() as session:
            session.get(Book, 1).title = "other writer"
            session.commit()

        repo.update(mine)

        assert uow.commit() == 1
        with session_factory() as session:
            stored = session.get(Book, 1)
            assert (stored.title, stored.rank) == ("book-1", 10)

    def test_update_unchanged_entity_counts_as_affected(self, uow: UnitOfWork, ranked: None) -> None:
        repo = uow.repository(Book)

        repo.update(repo.get_by_id(4))

        assert uow.context.pending_changes() == 1
        assert uow.commit() == 1

    def test_update_versioned_entity_bumps_version_once(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session]
    ) -> None:
        with session_factory() as session:
            session.add(Ticket(subject="printer on fire"))
            session.commit()
        repo = uow.repository(Ticket)

        repo.update(repo.get_by_id(1))
        uow.commit()

        with session_factory() as session:
            assert session.get(Ticket, 1).version == 2

    def test_delete_staged_insert_cancels_it(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session]
    ) -> None:
        repo = uow.repository(Book)
        book = repo.add(create_book(title="draft"))

        repo.delete(book)

        assert uow.commit() == 0
        assert _stored_books(session_factory) == 0

    def test_delete_range_mixes_staged_and_stored(
        self, uow: UnitOfWork, session_factory: sessionmaker[Session], ranked: None
    ) -> None:
        repo = uow.repository(Book)
        drafts = repo.add_range([create_book(title="draft-1"), create_book(title="draft-2")])

        repo.delete_range([*drafts, repo.get_by_id(10)])

        assert uow.commit() == 1
        assert _stored_books(session_factory) == 9


class TestErrorTranslation:
    """Test that SQLAlchemy failures surface as repository errors."""

    @pytest.fixture
    def context(self) -> MagicMock:
        context = MagicMock(spec=DataContext)
        context.session = MagicMock(spec=Session)
        context.set.side_effect = lambda model: select(model)
        return context

    def test_read_failure_raises_data_access_error(self, context: MagicMock) -> None:
        context.session.scalars.side_effect = OperationalError(
            "SELECT books.id FROM books", {}, Exception("database is locked")
        )
        repo = BaseRepository(context, Book)

        with pytest.raises(DataAccessError, match="Failed to get all entities") as exc_info:
            repo.get_all()

        assert exc_info.value.detail == "database is locked"
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_get_by_id_failure_raises_data_access_error(self, context: MagicMock) -> None:
        context.session.get.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        repo = BaseRepository(context, Book)

        with pytest.raises(DataAccessError, match="Failed to get entity"):
            repo.get_by_id(1)

    def test_count_failure_raises_data_access_error(self, context: MagicMock) -> None:
        context.session.scalar.side_effect = OperationalError("SELECT count(*)", {}, Exception("timeout"))
        repo = BaseRepository(context, Book)

        with pytest.raises(DataAccessError, match="Failed to count entities"):
            repo.count()

    def test_constraint_failure_on_merge_raises_constraint_violation(self, context: MagicMock) -> None:
        context.session.__contains__.return_value = False
        context.session.merge.side_effect = IntegrityError(
            "UPDATE books", {}, Exception("NOT NULL constraint failed: books.title")
        )
        repo = BaseRepository(context, Book)

        with pytest.raises(ConstraintViolationError):
            repo.update(create_book(id=1))

    def test_validation_errors_are_not_wrapped(self, context: MagicMock) -> None:
        repo = BaseRepository(context, Book)

        with pytest.raises(ValueError):
            repo.find_all(Book.id > 0, take=-5)

        context.session.scalars.assert_not_called()
