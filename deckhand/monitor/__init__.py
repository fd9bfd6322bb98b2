"""Rich terminal rendering of pipeline runs and plans.

The monitor only reads finished ``PipelineRun`` records and plans; it
never drives the pipeline.
"""
