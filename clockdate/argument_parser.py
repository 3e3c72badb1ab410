#!/usr/bin/env python
import argparse
from clockdate.wrappers import date_tree, estimate_clock_model
from clockdate import config as cdconf
import clockdate


clockdate_description = \
    "clockdate: molecular clock dating of phylogenetic trees\n\n"
subcommand_description = \
    "In addition, clockdate implements the sub-commands:\n\n"\
    "\t date\t\tdate the tree (the default when no sub-command is given).\n"\
    "\t clock\t\troot-to-tip regression, clock filter and relaxed clock test.\n\n"\
    "To print a description and argument list of the individual sub-commands, type:\n\n"\
    "\t clockdate <subcommand> -h\n\n"

date_description=\
    "clockdate infers a time scaled phylogeny given a tree with branch lengths in "\
    "substitutions per site, sampling dates of the tips, and the sequence length. "\
    "Node times and the substitution rate are fit jointly by maximum likelihood "\
    "under a strict (Poisson) or uncorrelated relaxed (Gamma-Poisson) clock. "\
    "The root is searched among the branches of the tree unless --keep-root is given.\n\n"

tree_description = "Name of file containing the tree in "\
    "newick, nexus, or phyloxml format. Branch lengths in substitutions per site."

dates_description = "csv or tsv file with columns 'name' (or 'strain', 'accession') and 'date'. "\
    "Dates are numeric (2012.15), ranges [2012.1:2012.5], ISO dates (2012-02-25), "\
    "or ambiguous dates (2012-XX-XX)."


def add_input_args(parser, required=False):
    parser.add_argument('--tree', required=required, type=str, help=tree_description)
    parser.add_argument('--dates', required=required, type=str, help=dates_description)
    parser.add_argument('--name-column', type=str, help="label of the column to be used as taxon name")
    parser.add_argument('--date-column', type=str, help="label of the column to be used as sampling date")
    parser.add_argument('--sequence-length', type=int, help="length of the sequence alignment the "
                              "branch lengths refer to. Used to convert branch lengths into "
                              "substitution counts.")


def add_optimizer_args(parser):
    parser.add_argument('--keep-root', required = False, action="store_true", default=False,
            help ="don't reroot the tree. Otherwise, all branches (or the best "
                  "--max-root-candidates by root-to-tip regression) are evaluated as root positions")
    parser.add_argument('--max-root-candidates', type=int,
                        help="number of root positions to evaluate, default: all branches")
    parser.add_argument('--tol', type=float, default=cdconf.CONVERGENCE_TOLERANCE,
                        help="relative convergence tolerance of the objective")
    parser.add_argument('--max-iter', type=int, default=cdconf.MAX_ITER,
                        help="maximal number of iterations of each optimization")
    parser.add_argument('--restarts', type=int, default=cdconf.N_RESTARTS,
                        help="number of additional optimizations from jittered starting points")
    parser.add_argument('--jobs', type=int, default=1, help="number of worker processes")
    parser.add_argument('--seed', type=int, help="random seed for restarts and bootstrap")


def add_common_args(parser):
    parser.add_argument('--verbose', default=1, type=int,  help='verbosity of output 0-6')
    parser.add_argument('--outdir', type=str,  help='directory to write the output to')


def add_date_args(parser):
    add_input_args(parser)
    parser.add_argument('--clock', default='strict', choices=cdconf.CLOCK_MODELS+sorted(cdconf.CLOCK_ALIASES),
                        help="clock model: 'strict' or 'uncorrelated' (relaxed clock with Gamma distributed "
                             "branch rates)")
    parser.add_argument('--clock-rate', type=float, help="if specified, the rate of the molecular clock won't be optimized.")
    parser.add_argument('--initial-rate', type=float, help="starting value of the rate, default: root-to-tip regression slope")
    add_optimizer_args(parser)
    parser.add_argument('--bootstrap', type=int, default=0,
                        help="number of parametric bootstrap replicates for confidence intervals")
    parser.add_argument('--outliers', action='store_true',
                        help="report tips whose root-to-tip distance deviates from the clock")
    add_common_args(parser)


def make_parser():
    parser = argparse.ArgumentParser(description = "",
                                     usage=clockdate_description)

    subparsers = parser.add_subparsers()

    add_date_args(parser)

    def toplevel(params):
        if params.tree and params.dates:
            return date_tree(params)
        else:
            print(clockdate_description+date_description+subcommand_description+
                  "'--tree', '--dates', and '--sequence-length' are REQUIRED inputs, type 'clockdate -h' for a full list of arguments.\n")
            return 1

    parser.set_defaults(func=toplevel)

    ## DATING
    d_parser = subparsers.add_parser('date', description=date_description)
    add_date_args(d_parser)
    d_parser.set_defaults(func=date_tree)

    ## CLOCKSIGNAL
    c_parser = subparsers.add_parser('clock',
            description="Calculates the root-to-tip regression and quantifies the 'clock-i-ness' of the tree. "
                        "Flags tips that deviate from the regression and tests whether a relaxed clock "
                        "fits the data better than a strict clock.")
    add_input_args(c_parser, required=True)
    add_optimizer_args(c_parser)
    c_parser.add_argument('--clock-filter', type=float, default=cdconf.NIQD,
                          help="flag tips that deviate more than this number of interquartile "
                               "ranges from the root-to-tip regression, set to 0 to switch off.")
    c_parser.add_argument('--alpha', type=float, default=cdconf.ALPHA,
                          help="significance level of the relaxed clock test")
    add_common_args(c_parser)
    c_parser.set_defaults(func=estimate_clock_model)

    # make a version subcommand
    v_parser = subparsers.add_parser('version', description='print version')
    v_parser.set_defaults(func=lambda x: print(clockdate.version))

    return parser
