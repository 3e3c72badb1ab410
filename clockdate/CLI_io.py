import os, sys
from Bio import Phylo
from Bio.Phylo.NewickIO import NewickError
from clockdate import ClockDateError
from clockdate.utils import datestring_from_numeric, DateConversion


def get_outdir(params, suffix='_clockdate'):
    if params.outdir:
        if os.path.exists(params.outdir):
            if os.path.isdir(params.outdir):
                return params.outdir.rstrip('/') + '/'
            else:
                raise ClockDateError("designated output location %s is not a directory"%params.outdir)
        else:
            os.makedirs(params.outdir)
            return params.outdir.rstrip('/') + '/'

    from datetime import datetime
    outdir_stem = datetime.now().date().isoformat()
    outdir = outdir_stem + suffix.rstrip('/')+'/'
    count = 1
    while os.path.exists(outdir):
        outdir = outdir_stem + '-%04d'%count + suffix.rstrip('/')+'/'
        count += 1

    os.makedirs(outdir)
    return outdir


def read_tree(fname):
    """read a tree in newick, nexus or phyloxml format"""
    if not fname or not os.path.isfile(fname):
        raise ClockDateError("tree file %s does not exist"%fname)
    with open(fname, encoding="utf-8") as fh:
        head = fh.read(1000).lstrip()
    if head[:6].upper()=="#NEXUS":
        fmt = "nexus"
    elif head.startswith("<"):
        fmt = "phyloxml"
    else:
        fmt = "newick"
    try:
        return Phylo.read(fname, fmt)
    except (ValueError, NewickError) as e:
        raise ClockDateError("could not read tree from %s as %s: %s"%(fname, fmt, e))


def export_timetree(fit_result, basename, bootstrap=None):
    """
    write the dated tree in nexus format, node dates (with bootstrap
    intervals if available), branch rates and the clock model summary
    """
    tree = fit_result.tree
    intervals = bootstrap.node_intervals if bootstrap is not None else None

    dates_fname = basename + 'dates.tsv'
    with open(dates_fname, 'w', encoding='utf-8') as fh_dates:
        if intervals is not None:
            fh_dates.write('#Lower and upper bound delineate the %1.1f%% to %1.1f%% bootstrap percentiles\n'
                           %(100*bootstrap.quantiles[0], 100*bootstrap.quantiles[-1]))
            fh_dates.write('#node\tdate\tnumeric date\tlower bound\tupper bound\n')
        else:
            fh_dates.write('#node\tdate\tnumeric date\n')
        for n in tree.preorder:
            name = tree.names[n]
            t = fit_result.times[n]
            if intervals is not None:
                if name in intervals.index:
                    row = intervals.loc[name]
                    fh_dates.write('%s\t%s\t%f\t%f\t%f\n'%(name, datestring_from_numeric(t), t,
                                                           row['lower'], row['upper']))
                else:
                    fh_dates.write('%s\t%s\t%f\t--\t--\n'%(name, datestring_from_numeric(t), t))
            else:
                fh_dates.write('%s\t%s\t%f\n'%(name, datestring_from_numeric(t), t))
    print("--- saved divergence times in \n\t %s\n"%dates_fname)

    rates_fname = basename + 'substitution_rates.tsv'
    with open(rates_fname, 'w', encoding='utf-8') as ofile:
        ofile.write("#node\tclock_length\tmutation_length\trate\n")
        dt = fit_result.elapsed()
        for n in tree.edges():
            ofile.write("%s\t%1.6f\t%1.6e\t%1.6e\n"%(tree.names[n], dt[n], tree.branch_length[n],
                                                     fit_result.branch_rates[n]))
    print("--- wrote branch specific rates to\n\t %s\n"%rates_fname)

    phylo_tree = fit_result.to_phylo()
    for n in phylo_tree.find_clades():
        n.comment = '&date=%1.2f'%n.numdate
    outtree_name = basename + 'timetree.nexus'
    Phylo.write(phylo_tree, outtree_name, 'nexus')
    print("--- tree saved in nexus format as  \n\t %s\n"%outtree_name)

    with open(basename + 'molecular_clock.txt', 'w', encoding='utf-8') as ofile:
        ofile.write(str(fit_result))
        if bootstrap is not None:
            ofile.write(str(bootstrap))


def write_table(df, fname, description):
    df.to_csv(fname, sep='\t', float_format='%1.6g')
    print("--- wrote %s to\n\t %s\n"%(description, fname))


def write_rtt(regression, fname):
    """root-to-tip distances and clock deviation of the tips"""
    d2d = DateConversion.from_regression(regression)
    with open(fname, 'w', encoding='utf-8') as ofile:
        ofile.write("name, date, root-to-tip distance, clock-deviation\n")
        for name, row in regression['points'].iterrows():
            ofile.write("%s, %f, %f, %f\n"%(name, row['date'], row['dist2root'],
                                            d2d.clock_deviation(row['date'], row['dist2root'])))
    print("--- wrote dates and root-to-tip distances to \n\t%s\n"%fname)
    return d2d


def print_error(msg):
    print("\nERROR: %s\n"%msg, file=sys.stderr)
