"""
Batch dispatch of independent units of work (root candidates, restarts,
bootstrap replicates) to a bounded pool of worker processes.
"""
import multiprocessing
from clockdate import ConfigurationError


def map_tasks(func, tasks, n_jobs=1):
    """
    Apply `func` to every task and return the results in the order of the
    tasks. With n_jobs==1 the tasks are run sequentially in this process,
    otherwise in a pool of min(n_jobs, len(tasks)) worker processes.

    `func` has to be a picklable module level function and the tasks
    picklable self-contained inputs. Inside a pool worker, which is not
    allowed to start processes, the tasks are always run sequentially.
    """
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs<1:
        raise ConfigurationError("option 'n_jobs' has to be an integer >= 1, got %r"%(n_jobs,))
    tasks = list(tasks)
    if n_jobs==1 or len(tasks)<2 or multiprocessing.current_process().daemon:
        return [func(t) for t in tasks]

    with multiprocessing.Pool(processes=min(n_jobs, len(tasks))) as pool:
        return pool.map(func, tasks)
