"""
BAM Split Pipeline Component

A composite component that combines split planning and split reading into a
complete parallel read job.
"""

import dagster
from dagster import Model, Resolvable, job

from .bam_split_planner import BamSplitPlanner
from .bam_split_reader import BamSplitReader


class BamSplitPipeline(Model, Resolvable):
    """
    Complete split-and-read pipeline component.

    The planner computes every split up front; the reader op is mapped over
    the planner's dynamic outputs so each split is read by one op instance.
    """

    planner: BamSplitPlanner
    reader: BamSplitReader
    job_name: str = "bam_split_job"

    def build_job(self, context=None):
        plan_bam_splits_op = self.planner.build_defs(context)
        read_bam_split_op = self.reader.build_defs(context)

        @job(name=self.job_name)
        def bam_split_job():
            """
            Plans the splits of the BAM file and reads them in parallel.
            """
            splits = plan_bam_splits_op()
            splits.map(read_bam_split_op)

        return bam_split_job

    def build_defs(self, context):
        return dagster.Definitions(jobs=[self.build_job(context)])
