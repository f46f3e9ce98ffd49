from variants.pipeline import ContentFilter, ContentPipeline


class Suffix:
    def __init__(self, suffix, enabled=True):
        self.suffix = suffix
        self.enabled = enabled

    def process_content(self, content):
        return content + self.suffix

    def is_enabled(self):
        return self.enabled


def test_filters_should_run_in_order():
    pipeline = ContentPipeline([Suffix("-a")]).add(Suffix("-b"))
    assert pipeline.apply("x") == "x-a-b"


def test_disabled_filters_should_be_skipped():
    pipeline = ContentPipeline([Suffix("-a", enabled=False), Suffix("-b")])
    assert pipeline.apply("x") == "x-b"


def test_empty_content_should_be_returned_as_is():
    assert ContentPipeline([Suffix("-a")]).apply("") == ""


def test_filters_should_be_copied_out():
    pipeline = ContentPipeline([Suffix("-a")])
    pipeline.filters.clear()
    assert len(pipeline.filters) == 1


def test_filter_protocol_should_be_checked_structurally():
    assert isinstance(Suffix("-a"), ContentFilter)
    assert not isinstance(object(), ContentFilter)
