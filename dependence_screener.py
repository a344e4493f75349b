import os
import sys
import multiprocessing
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from tqdm import tqdm

from distance_stats import distance_stats
from numba_utils import corr_coef, dcov_sq

COLUMNS = ["Series1", "Series2", "pearson", "dcov", "dcor"]
TOP_N = 10
MISSING_THRESHOLD = 0.1
DATA_DIR = os.path.join("data", "dependence")

@dataclass
class DependenceData:
    data: pd.DataFrame = field(repr=False)
    series: Optional[pd.DataFrame] = field(default=None, repr=False)

    def __post_init__(self):

        missing = set(COLUMNS) - set(self.data.columns)
        extra   = set(self.data.columns) - set(COLUMNS)
        if missing:
            raise ValueError(f"DependenceData missing cols: {missing}")
        if extra:
            raise ValueError(f"DependenceData extra cols: {extra}")

        # trim to the top rows and force a copy
        self.data = self.data.iloc[:TOP_N].copy()

        nums = COLUMNS[2:]
        self.data[nums] = self.data[nums].apply(pd.to_numeric, errors="raise")

    def show(self):
        print(self.data.to_string(float_format='%.6f'))

    def get(self):
        return self.data

    def plot_pair(self, pair: int = 0, save_path: str = None):

        if self.series is None:
            raise ValueError("No series attached, nothing to plot")

        s1, s2 = self.data.loc[pair, ["Series1", "Series2"]].tolist()
        dcor = float(self.data.at[pair, "dcor"])
        pearson = float(self.data.at[pair, "pearson"])

        fig, ax = plt.subplots(figsize=(6, 6))
        ax.scatter(self.series[s2], self.series[s1], s=8, alpha=0.6)
        ax.set_title(f"{s1} vs {s2}: dCor={dcor:.3f}, r={pearson:.3f}")
        ax.set_xlabel(s2)
        ax.set_ylabel(s1)
        ax.grid(True); fig.tight_layout()
        if save_path:
            fig.savefig(save_path, dpi=150, bbox_inches="tight")
            plt.close(fig)
        else:
            plt.show()
            plt.close(fig)

    def cache(self, path=None):

        if path is None:
            os.makedirs(DATA_DIR, exist_ok=True)
            path = os.path.join(DATA_DIR, f"dependence_top{TOP_N}.pkl")

        print(f"saving dependence data to: {path}")
        self.data.to_pickle(path)

        if self.series is None:
            return

        fig_dir = os.path.join(os.path.dirname(path) or ".", "scatter")
        os.makedirs(fig_dir, exist_ok=True)
        for idx, row in self.data.iterrows():
            fp = os.path.join(fig_dir, f"{row.Series1}_{row.Series2}.png")
            if os.path.exists(fp):
                continue
            self.plot_pair(pair=idx, save_path=fp)

@dataclass
class SeriesData:
    frame: pd.DataFrame = field(repr=False)

    def __post_init__(self):

        self.parse_data()

        if self.frame.empty:
            raise ValueError("No data found")
        if len(self.frame.columns) < 2:
            raise ValueError("Insufficient data, at least 2 series required")

    def parse_data(self):
        """Drop NaN, inf, non-numeric and constant series so every pair is well defined."""
        print(f"Original data shape: {self.frame.shape}")

        old = self.frame

        self.frame = self.frame.select_dtypes(include=[np.number])

        # remove columns with too many missing values
        min_valid_rows = int(len(self.frame) * (1 - MISSING_THRESHOLD))
        self.frame = self.frame.dropna(thresh=min_valid_rows, axis=1)

        self.frame = self.frame.ffill().bfill()
        self.frame = self.frame.replace([np.inf, -np.inf], np.nan)
        self.frame = self.frame.dropna()

        # constant series have zero distance variance
        if not self.frame.empty:
            self.frame = self.frame.loc[:, self.frame.nunique() > 1]

        print(f"Cleaned data shape: {self.frame.shape}")
        print(f"Removed {old.shape[1] - self.frame.shape[1]} series due to data quality issues")

    def show(self):
        print(self.frame)

    def analyse_data(self, dcor_thresh: float = 0.0, n_jobs: int = None) -> DependenceData:

        cols = self.frame.columns.to_list()
        X = self.frame.values.astype(np.float64)     # shape (T, N)

        N = X.shape[1]
        iu = np.triu_indices(N, k=1)
        jobs = [
            (np.ascontiguousarray(X[:, [ii, jj]]), cols[ii], cols[jj])
            for ii, jj in zip(*iu)
        ]
        total = len(jobs)
        print(f"Computing distance correlation on {total:,} pairs")

        records = []
        if n_jobs == 1:
            results = map(analyse_pair_raw, jobs)
            for rec in tqdm(results, total=total, desc="Analyzing pairs", unit="pair"):
                records.append(rec)
        else:
            with multiprocessing.Pool(processes=n_jobs, initializer=_init_worker) as pool:
                for rec in tqdm(
                    pool.imap_unordered(analyse_pair_raw, jobs, chunksize=max(1, total // 100)),
                    total=total,
                    desc="Analyzing pairs",
                    unit="pair"
                ):
                    records.append(rec)

        records = [r for r in records if r[4] >= dcor_thresh]
        if not records:
            raise RuntimeError(f"No valid pairs found with dcor >= {dcor_thresh}")

        df = (
            pd.DataFrame(records, columns=COLUMNS)
              .sort_values(["dcor", "Series1", "Series2"], ascending=[False, True, True])
              .reset_index(drop=True)
        )
        return DependenceData(df, self.frame)

def analyse_pair_raw(job):
    """
    job is (arr, s1, s2) where arr.shape == (T,2)
    """
    arr, s1, s2 = job
    x = np.ascontiguousarray(arr[:, 0])
    y = np.ascontiguousarray(arr[:, 1])

    try:
        if np.any(~np.isfinite(x)) or np.any(~np.isfinite(y)):
            raise ValueError("NaN or Inf present")
        stats = distance_stats(x, y, parallel=False)
    except ValueError as e:
        raise ValueError(f"Analysis failed for {s1}-{s2}: {str(e)}")

    # jit'd math
    pearson = corr_coef(y, x)

    return s1, s2, float(pearson), stats.dcov, stats.dcor

def _init_worker():
    # warm up Numba functions once per process
    dummy_x = np.arange(200, dtype=np.float64)
    dummy_y = dummy_x * 2.0
    dcov_sq(dummy_x, dummy_y)
    corr_coef(dummy_y, dummy_x)

def parse_args(argv=None):
    args = sys.argv[1:] if argv is None else list(argv)
    if not args or len(args) > 2:
        raise ValueError("usage: dependence-screener CSV [DCOR_THRESH]")
    path = args[0]
    thresh = float(args[1]) if len(args) == 2 else 0.0
    return path, thresh

def main(argv=None):
    multiprocessing.freeze_support()

    path, thresh = parse_args(argv)
    frame = pd.read_csv(path, index_col=0)

    sd = SeriesData(frame)
    dd = sd.analyse_data(dcor_thresh=thresh, n_jobs=multiprocessing.cpu_count())
    dd.show()
    return dd

if __name__ == "__main__":
    main()
