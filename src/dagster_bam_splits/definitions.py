import logging
import os

# Configure logging to reduce verbosity - set at the very beginning
logging.basicConfig(level=logging.ERROR, force=True)
logging.getLogger().setLevel(logging.ERROR)
logging.getLogger("dagster").setLevel(logging.ERROR)
logging.getLogger("dagster_bam_splits").setLevel(logging.INFO)

from dagster import definitions
from dagster.components.core.component_tree import ComponentTree

from .components.bam_split_pipeline import BamSplitPipeline
from .components.bam_split_planner import BamSplitPlanner
from .components.bam_split_reader import BamSplitReader

BAM_PATH = os.environ.get("BAM_SPLITS_INPUT", "data/sample.bam")


@definitions
def defs():
    context = ComponentTree.for_test().load_context

    pipeline = BamSplitPipeline(
        planner=BamSplitPlanner(
            bam_path=BAM_PATH,
            keep_paired_reads_together=True,
            intervals=os.environ.get("BAM_SPLITS_INTERVALS") or None,
        ),
        reader=BamSplitReader(),
    )

    return pipeline.build_defs(context)
