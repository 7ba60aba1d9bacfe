import logging

import markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor
from xml.etree.ElementTree import Element


logger = logging.getLogger(__name__)


class QAContentProcessor(Treeprocessor):
    def run(self, root):
        """Post-process the element tree of a question or answer body"""
        logger.debug("Running QAContentProcessor...")

        self.wrap_tables(root)
        self.mark_links(root)

    def wrap_tables(self, root):
        """Wrap <table> elements inside <figure> so wide tables can scroll."""
        parents = self.parent_map(root)
        for table in list(root.iter("table")):
            parent = parents.get(table)
            if parent is None:
                continue
            index = list(parent).index(table)
            parent.remove(table)
            figure = Element("figure", {"class": "table-wrapper"})
            figure.append(table)
            parent.insert(index, figure)

    def mark_links(self, root):
        """User-submitted links should not pass ranking or window access."""
        for link in root.iter("a"):
            link.set("rel", "nofollow noopener")

    def parent_map(self, root):
        return {child: parent for parent in root.iter() for child in parent}


class QAContentExtension(Extension):
    def extendMarkdown(self, md):
        # Raw HTML in user content is escaped instead of passed through
        if "html_block" in md.preprocessors:
            md.preprocessors.deregister("html_block")
        if "html" in md.inlinePatterns:
            md.inlinePatterns.deregister("html")
        md.treeprocessors.register(QAContentProcessor(md), "qa_content", 15)


def convert_markdown(md_text: str) -> str:
    """Convert a question or answer body from Markdown to HTML."""
    extensions = [
        "fenced_code",
        "tables",
        "sane_lists",
        QAContentExtension(),
    ]
    return markdown.markdown(md_text or "", extensions=extensions)
