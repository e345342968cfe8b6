from gatherdata import *
from varsel import *


in_dir = './data/input/'
gather_path = in_dir + 'gather.csv'
out_dir = './data/output/vita/'
outcome_col = 'sed_supply'  # numeric response column of the gather table

gather = read_gather(gather_path)
gather = gather.dropna(subset=gather.select_dtypes(include=np.number).columns)
x = gather.select_dtypes(include=np.number).drop(columns=[outcome_col])
y = gather[outcome_col]

vita = VitaHandler(rf_kwargs={'ntree': 1000, 'mtry_prop': 0.2, 'nodesize_prop': 0.1, 'no_threads': 4, 'treetype': 'regression', 'importance': 'impurity_corrected'}, vita_kwargs={'p_t': 0.05})

print(f"Vita variable selection for {outcome_col} on {x.shape[1]} variables, {x.shape[0]} samples")
print()
result = vita.var_sel_vita(x, y, rng=np.random.default_rng(20151))
print(result.info.sort_values('pvalue'))
os.makedirs(out_dir, exist_ok=True)
vita.save_result(result, out_dir, suffix='_' + outcome_col)
