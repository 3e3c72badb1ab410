import os, sys
import time
import datetime
from textwrap import fill
import numpy as np
import pandas as pd
from clockdate import config as cdconf
from clockdate import ClockDateError


class Logger(object):
    """
    Print log messages to stdout, prefixed with the time elapsed since the
    logger was created and indented by log-level. Picklable, so it can
    travel to worker processes.
    """
    def __init__(self, verbose=cdconf.VERBOSE, t_start=None):
        self.verbose = verbose
        self.t_start = time.time() if t_start is None else t_start
        self.log_messages = set()

    def __call__(self, msg, level, warn=False, only_once=False):
        """
        Print log message *msg* to stdout.

        Parameters
        -----------

         msg : str
            String to print on the screen

         level : int
            Log-level. Only the messages with a level lower than the
            current verbose level will be shown.

         warn : bool
            Warning flag. If True, the message will be displayed
            if its log-level is equal to the verbose level.

         only_once : bool
            suppress repeated messages
        """
        if only_once and msg in self.log_messages:
            return
        self.log_messages.add(msg)

        lw=80
        if level<self.verbose or (warn and level<=self.verbose):
            dt = time.time() - self.t_start
            outstr = '\n' if level<2 else ''
            initial_indent = format(dt, '4.2f')+'\t' + level*'-'
            subsequent_indent = " "*len(format(dt, '4.2f')) + "\t" + " "*level
            outstr += fill(msg, width=lw, initial_indent=initial_indent, subsequent_indent=subsequent_indent)
            print(outstr, file=sys.stdout)


def silent_logger():
    return Logger(verbose=0)


class DateConversion(object):
    """
    Small container class to store parameters to convert between the
    root-to-tip distance in substitutions per site and calendar dates.
    It is assumed that the conversion formula is 'distance = rate*date + intercept'
    """
    def __init__(self):
        self.clock_rate = 0
        self.intercept = 0
        self.chisq = 0
        self.r_val = 0
        self.cov = None
        self.valid_confidence = False

    def __str__(self):
        if self.cov is not None and self.valid_confidence:
            dslope = np.sqrt(self.cov[0,0])
            outstr = ('Root-Tip-Regression:\n --rate:\t%1.3e +/- %1.2e (one std-dev)\n --chi^2:\t%1.2f\n --r^2:  \t%1.2f\n'
                  %(self.clock_rate, dslope, self.chisq**2, self.r_val**2))
        else:
            outstr = ('Root-Tip-Regression:\n --rate:\t%1.3e\n --r^2:  \t%1.2f\n'
                  %(self.clock_rate, self.r_val**2))
        return outstr

    @classmethod
    def from_regression(cls, clock_model):
        """
        Create the conversion object from a regression

        Parameters
        ----------

         clock_model : dict
            dictionary as returned from TreeRegression with fields intercept and slope
        """
        dc = cls()
        dc.clock_rate = clock_model['slope']
        dc.intercept = clock_model['intercept']
        dc.chisq = clock_model.get('chisq')
        dc.valid_confidence = clock_model.get('valid_confidence', False)
        if 'cov' in clock_model and dc.valid_confidence:
            dc.cov = clock_model['cov']
        dc.r_val = clock_model.get('r_val', 0.0)
        return dc

    @property
    def root_date(self):
        return -self.intercept/self.clock_rate if self.clock_rate else np.nan

    def numdate_from_dist2root(self, d2r):
        """
        estimate the numerical date based on the distance to root.
        -> crude dating of internal nodes
        """
        return (d2r-self.intercept)/self.clock_rate

    def clock_deviation(self, numdate, d2r):
        """
        difference between the root-to-tip distance and the distance expected at numdate
        """
        return (self.numdate_from_dist2root(d2r) - numdate)*self.clock_rate


def numeric_date(dt=None):
    """
    Convert datetime object to the numeric date.
    The numeric date format is YYYY.F, where F is the fraction of the year passed

    Parameters
    ----------
     dt:  datetime.datetime, None
        date of to be converted. if None, assume today

    """
    from calendar import isleap

    if dt is None:
        dt = datetime.datetime.now()

    days_in_year = 366 if isleap(dt.year) else 365
    return dt.year + (dt.timetuple().tm_yday-0.5) / days_in_year


def datetime_from_numeric(numdate):
    """convert a numeric decimal date to a python datetime object
    Note that this only works for AD dates since the range of datetime objects
    is restricted to year>1.

    Parameters
    ----------
    numdate : float
        numeric date as in 2018.23

    Returns
    -------
    datetime.datetime
        datetime object
    """
    from calendar import isleap
    days_in_year = 366 if isleap(int(numdate)) else 365
    # add a small number of the time elapsed in a year to avoid
    # unexpected behavior for values 1/365, 2/365, etc
    days_elapsed = int(((numdate%1)+1e-10)*days_in_year)
    return datetime.datetime(int(numdate),1,1) + datetime.timedelta(days=days_elapsed)


def datestring_from_numeric(numdate):
    """convert a numerical date to a formated date string YYYY-MM-DD

    Dates outside the range of datetime (before year 1 or after 9999)
    are formatted with the year only approximately correct in its fraction.
    """
    try:
        return datetime.datetime.strftime(datetime_from_numeric(numdate), "%Y-%m-%d")
    except (ValueError, OverflowError):
        year = int(np.floor(numdate))
        dt = datetime_from_numeric(1900+(numdate%1))
        return "%04d-%02d-%02d"%(year, dt.month, dt.day)


def parse_dates(date_file, name_col=None, date_col=None, logger=None):
    """
    parse dates from a csv/tsv file and return a dictionary mapping
    taxon names to numerical dates or [lower, upper] date ranges.

    Parameters
    ----------
    date_file : str
        name of file to parse meta data from
    name_col : str, optional
        column with taxon names. Default: first of 'name', 'strain', 'accession'
    date_col : str, optional
        column with dates. Default: first column containing 'date'

    Returns
    -------
    dict
        taxon name -> float or [lower, upper]. Each date is parsed as float,
        as [2002.2:2004.3] range, as ISO date via pandas.to_datetime, and
        finally as ambiguous date such as 2018-05-XX
    """
    logger = logger or silent_logger()
    logger("Attempting to parse dates from %s"%date_file, 1)
    if not os.path.isfile(date_file):
        raise ClockDateError("ERROR: file %s does not exist"%date_file)
    # separator for the csv/tsv file. If csv, we'll strip extra whitespace around ','
    full_sep = '\t' if date_file.endswith('.tsv') else r'\s*,\s*'
    df = pd.read_csv(date_file, sep=full_sep, engine='python', dtype='str', index_col=False,
                     comment='#')
    df.columns = [c.strip('"\'') for c in df.columns]

    if date_col and date_col not in df.columns:
        raise ClockDateError("ERROR: specified column for dates does not exist. \n\tAvailable columns are: "\
                            +", ".join(df.columns)+"\n\tYou specified '%s'"%date_col)
    if name_col and name_col not in df.columns:
        raise ClockDateError("ERROR: specified column for the taxon name does not exist. \n\tAvailable columns are: "\
                            +", ".join(df.columns)+"\n\tYou specified '%s'"%name_col)

    if name_col is None:
        potential_index_columns = [col for col in df.columns if col.lower() in ['name', 'strain', 'accession']]
        if not potential_index_columns:
            raise ClockDateError("ERROR: Cannot read metadata: need at least one column that contains the taxon labels."
                  " Looking for the first column that contains 'name', 'strain', or 'accession' in the header.")
        name_col = potential_index_columns[0]
    if date_col is None:
        potential_date_columns = [col for col in df.columns if 'date' in col.lower()]
        if not potential_date_columns:
            raise ClockDateError("ERROR: Metadata file has no column which looks like a sampling date!")
        date_col = potential_date_columns[0]
    logger("Using column '%s' as name and column '%s' as date."%(name_col, date_col), 2)

    dates = {}
    for name, date_str in zip(df[name_col], df[date_col]):
        if not isinstance(name, str):
            continue
        name = name.strip('"\'')
        if not isinstance(date_str, str) or date_str.strip('"\'')=='':
            continue
        parsed = parse_date_string(date_str.strip('"\''))
        if parsed is None:
            logger("parse_dates: can't parse date '%s' of %s, skipping"%(date_str, name), 1, warn=True)
        else:
            dates[name] = parsed

    if len(dates)==0:
        raise ClockDateError("ERROR: Cannot parse dates correctly! Check date format.")
    return dates


def parse_date_string(date_str):
    """
    parse a single date string: float, [lower:upper] range, ISO date or
    ambiguous date like 2017-XX-XX. Returns None if nothing works.
    """
    try:
        return float(date_str)
    except ValueError:
        pass
    if date_str[0]=='[' and date_str[-1]==']' and len(date_str[1:-1].split(':'))==2:
        try:
            return [float(x) for x in date_str[1:-1].split(':')]
        except ValueError:
            pass
    if 'X' not in date_str.upper():
        try:
            return numeric_date(pd.to_datetime(date_str))
        except (ValueError, OverflowError):
            pass
    lower, upper = ambiguous_date_to_date_range(date_str, '%Y-%m-%d')
    if lower is None:
        return None
    return [numeric_date(x) for x in [lower, upper]]


def ambiguous_date_to_date_range(mydate, fmt="%Y-%m-%d"):
    """parse an abiguous date such as 2017-XX-XX to [2017,2017.999]

    Parameters
    ----------
    mydate : str
        date string to be parsed
    fmt : str
        format descriptor. default is %Y-%m-%d

    Returns
    -------
    tuple
        upper and lower bounds on the date. return (None, None) if errors
    """
    sep = fmt.split('%')[1][-1]
    min_date, max_date = {}, {}
    today = datetime.date.today()

    for val, field  in zip(mydate.split(sep), fmt.split(sep+'%')):
        f = 'year' if 'y' in field.lower() else ('day' if 'd' in field.lower() else 'month')
        if 'XX' in val.upper():
            if f=='year':
                return None, None
            elif f=='month':
                min_date[f]=1
                max_date[f]=12
            elif f=='day':
                min_date[f]=1
                max_date[f]=31
        else:
            try:
                min_date[f]=int(val)
                max_date[f]=int(val)
            except ValueError:
                return None, None
    if len(min_date)!=3:
        return None, None
    max_date['day'] = min(max_date['day'], 31 if max_date['month'] in [1,3,5,7,8,10,12]
                                           else 28 if max_date['month']==2 else 30)
    try:
        lower_bound = datetime.date(year=min_date['year'], month=min_date['month'], day=min_date['day'])
        upper_bound = datetime.date(year=max_date['year'], month=max_date['month'], day=max_date['day'])
    except ValueError:
        return None, None
    return (lower_bound, upper_bound if upper_bound<today else today)
