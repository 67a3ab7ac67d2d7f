""" "
Blocking Dune Client Class responsible for executing Dune Queries
Framework built on Dune's API Documentation
https://docs.dune.com/api-reference/overview/introduction
"""

from sandworm.api.extensions import ExtendedAPI


class DuneClient(ExtendedAPI):
    """
    An interface for Dune API with a few convenience methods
    combining the use of endpoints (e.g. run_sql)

    Waiting happens on the calling thread (time.sleep), see AsyncDuneClient
    for the asyncio flavour. Both share the polling state machine of ExecutionPoller.

    Inheritance Hierarchy sketched as follows:

        DuneClient
        |
        |--- ExtendedAPI
                |   - Contains wait_for_results and its compositions
                |               (things like `run_sql`, `run_query`, `run_query_csv`, etc..)
                |
                |--- ExecutionAPI(BaseRouter)
                |        - Contains query execution, status, results and cancel methods.
                |
                |--- PipelineAPI(BaseRouter)
                |       - Contains pipeline status
    """
