"""
MiniDoc Bookstore Script
========================
The bookstore task list run by `python main.py`:

  Task 2  basic CRUD           genre / year / author filters, update, delete
  Task 3  advanced queries     compound filter, projection, sorting, pagination
  Task 4  aggregation          average price by genre, top author, decades
  Task 5  indexing             title + compound index, explain()

Tasks run in order against one Session. The first error is rendered and
stops the script.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Tuple

from cli.renderer import Renderer
from cli.session import Session
from storage.errors import EngineError

logger = logging.getLogger(__name__)

TITLE_ONLY = {"_id": 0, "title": 1}


@dataclass
class ScriptOptions:
    genre: str = "Fiction"
    year: int = 2000
    author: str = "George Orwell"
    update_title: str = "The Great Gatsby"
    new_price: float = 15.99
    delete_title: str = "Moby Dick"
    page: int = 1
    page_size: int = 5


class BookstoreScript:
    """
    Usage:
        with Session() as session:
            BookstoreScript(session, Renderer()).run()
    """

    def __init__(self, session: Session, renderer: Renderer, options: ScriptOptions = None):
        self.session = session
        self.renderer = renderer
        self.options = options or ScriptOptions()

    def tasks(self) -> List[Tuple[str, Callable[[], None]]]:
        return [
            ("Task 2: Basic CRUD operations", self.basic_crud),
            ("Task 3: Advanced queries", self.advanced_queries),
            ("Task 4: Aggregation pipelines", self.aggregations),
            ("Task 5: Indexing", self.indexing),
        ]

    def run(self) -> int:
        """Run every task. Returns 0 on success, 1 after the first error."""
        for title, task in self.tasks():
            self.renderer.render_message(f"\n{'=' * 60}\n{title}\n{'=' * 60}")
            try:
                task()
            except EngineError as e:
                logger.debug("Task failed: %s", title, exc_info=True)
                self.renderer.render_error(e)
                return 1
        return 0

    # ─── Task 2 ─────────────────────────────────────────────────────

    def basic_crud(self):
        db, out, opts = self.session.executor, self.renderer, self.options

        out.render_heading(f'Books in genre "{opts.genre}"')
        out.render_rows(db.find({"genre": opts.genre}, projection=TITLE_ONLY))

        out.render_heading(f"Books published after {opts.year}")
        out.render_rows(db.find({"published_year": {"$gt": opts.year}}, projection=TITLE_ONLY))

        out.render_heading(f"Books by {opts.author}")
        out.render_rows(db.find({"author": opts.author}, projection=TITLE_ONLY))

        result = db.update_one({"title": opts.update_title}, {"$set": {"price": opts.new_price}})
        out.render_heading(f'Update price of "{opts.update_title}"')
        out.render_message("Success" if result.modified_count > 0 else "No match found")

        result = db.delete_one({"title": opts.delete_title})
        out.render_heading(f'Delete "{opts.delete_title}"')
        out.render_message("Success" if result.deleted_count > 0 else "No match found")

    # ─── Task 3 ─────────────────────────────────────────────────────

    def advanced_queries(self):
        db, out, opts = self.session.executor, self.renderer, self.options

        out.render_heading("Books in stock and published after 2010")
        out.render_rows(db.find({"in_stock": True, "published_year": {"$gt": 2010}},
                                projection=TITLE_ONLY))

        out.render_heading("Projection (title, author, price)")
        out.render_rows(db.find({}, projection={"_id": 0, "title": 1, "author": 1, "price": 1}))

        price_view = {"_id": 0, "title": 1, "price": 1}
        out.render_heading("Sorted by price (ascending)")
        out.render_rows(db.find({}, projection=price_view, sort={"price": 1}))

        out.render_heading("Sorted by price (descending)")
        out.render_rows(db.find({}, projection=price_view, sort={"price": -1}))

        out.render_heading(f"Page {opts.page} ({opts.page_size} books per page)")
        out.render_rows(db.find_page({}, page=opts.page, page_size=opts.page_size,
                                     projection=TITLE_ONLY))

    # ─── Task 4 ─────────────────────────────────────────────────────

    def aggregations(self):
        db, out = self.session.executor, self.renderer

        out.render_heading("Average price by genre")
        out.render_rows(db.aggregate([
            {"$group": {"_id": "$genre", "avgPrice": {"$avg": "$price"}}},
            {"$sort": {"avgPrice": -1}},
        ]))

        out.render_heading("Author with the most books")
        out.render_rows(db.aggregate([
            {"$group": {"_id": "$author", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
            {"$limit": 1},
        ]))

        out.render_heading("Books grouped by decade")
        out.render_rows(db.aggregate([
            {"$project": {"decade": {"$concat": [
                {"$toString": {"$subtract": [
                    "$published_year", {"$mod": ["$published_year", 10]},
                ]}},
                "s",
            ]}}},
            {"$group": {"_id": "$decade", "count": {"$sum": 1}}},
            {"$sort": {"_id": 1}},
        ]))

    # ─── Task 5 ─────────────────────────────────────────────────────

    def indexing(self):
        db, out, opts = self.session.executor, self.renderer, self.options

        name = db.create_index({"title": 1})
        out.render_message(f"\nCreated index '{name}' on 'title'")
        name = db.create_index({"author": 1, "published_year": -1})
        out.render_message(f"Created compound index '{name}' on 'author' and 'published_year'")

        report = db.explain({"title": opts.update_title})
        out.render_heading("Query performance (explain)")
        out.render_message(f"Execution time: {report.execution_time_millis} ms")
        mode = out.mode
        out.mode = "vertical"
        try:
            out.render_rows([report])
        finally:
            out.mode = mode
